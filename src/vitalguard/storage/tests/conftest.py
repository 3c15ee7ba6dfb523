"""
Storage test fixtures.

The PostgreSQL backend is tested against a mocked Database; no server needed.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from vitalguard.storage.database import Database
from vitalguard.storage.state_store import JsonFileStateStore, PostgresStateStore


@pytest.fixture
def state_dir(tmp_path):
    return tmp_path / "state"


@pytest.fixture
def json_store(state_dir):
    return JsonFileStateStore(state_dir)


@pytest.fixture
def mock_db():
    """Database double backed by an in-memory dict."""
    rows = {}
    db = MagicMock(spec=Database)

    async def execute(query, *args):
        if query.strip().startswith("INSERT"):
            rows[args[0]] = args[1]
        elif query.strip().startswith("DELETE"):
            rows.pop(args[0], None)
        return "OK"

    async def fetchrow(query, *args):
        if args[0] not in rows:
            return None
        return {"value": rows[args[0]]}

    db.execute = AsyncMock(side_effect=execute)
    db.fetchrow = AsyncMock(side_effect=fetchrow)
    db.initialize = AsyncMock()
    db.close = AsyncMock()
    db.health_check = AsyncMock(return_value=True)
    db.rows = rows
    return db


@pytest.fixture
def pg_store(mock_db):
    return PostgresStateStore(mock_db)
