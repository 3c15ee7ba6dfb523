"""
Key/value persistence for monitor state across restarts.

Values are JSON documents keyed by stable string identifiers (StorageKeys).
load() never raises: a missing key or an unreadable value returns the
caller's fallback.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Protocol, Union, runtime_checkable

if TYPE_CHECKING:
    from .database import Database

logger = logging.getLogger(__name__)


class StorageKeys:
    """Stable identifiers of persisted values."""

    PROFILE = "vitalguard_profile"
    HISTORY = "vitalguard_history"
    ALERTS = "vitalguard_alerts"
    SETUP_COMPLETE = "vitalguard_setup_complete"
    SENSOR_ADDRESS = "vitalguard_sensor_address"
    REMOTE_URL = "vitalguard_remote_url"
    ADVISOR_API_KEY = "vitalguard_advisor_api_key"


@runtime_checkable
class StateStore(Protocol):
    """Persistence gateway used by the coordinator."""

    async def initialize(self) -> None:
        ...

    async def load(self, key: str, fallback: Any = None) -> Any:
        ...

    async def save(self, key: str, value: Any) -> bool:
        ...

    async def remove(self, key: str) -> None:
        ...

    async def health_check(self) -> bool:
        ...

    async def close(self) -> None:
        ...


class JsonFileStateStore:
    """
    One JSON file per key inside a state directory.

    Writes go to a temporary file that is atomically renamed over the target,
    so a crash never leaves a half-written value behind.

    Usage:
        store = JsonFileStateStore("~/.vitalguard")
        await store.save(StorageKeys.REMOTE_URL, "https://...")
        url = await store.load(StorageKeys.REMOTE_URL, "")
    """

    def __init__(self, directory: Union[str, Path]) -> None:
        self._directory = Path(directory).expanduser()

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, key: str) -> Path:
        return self._directory / f"{key}.json"

    async def load(self, key: str, fallback: Any = None) -> Any:
        return await asyncio.to_thread(self._load_sync, key, fallback)

    async def save(self, key: str, value: Any) -> bool:
        return await asyncio.to_thread(self._save_sync, key, value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._path(key).unlink, missing_ok=True)

    async def initialize(self) -> None:
        await asyncio.to_thread(self._directory.mkdir, parents=True, exist_ok=True)

    async def health_check(self) -> bool:
        return await asyncio.to_thread(self._writable_sync)

    async def close(self) -> None:
        return None

    # File access runs on a worker thread so a slow disk never stalls polling

    def _load_sync(self, key: str, fallback: Any) -> Any:
        path = self._path(key)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return fallback
        except OSError as e:
            logger.warning(f"Error loading {key} from storage: {e}")
            return fallback

        try:
            return json.loads(text)
        except ValueError as e:
            logger.warning(f"Error loading {key} from storage: {e}")
            return fallback

    def _save_sync(self, key: str, value: Any) -> bool:
        try:
            data = json.dumps(value)
            self._directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=f".{key}.")
            with os.fdopen(fd, "w", encoding="utf-8") as fp:
                fp.write(data)
            os.replace(tmp_name, self._path(key))
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Error saving {key} to storage: {e}")
            return False

    def _writable_sync(self) -> bool:
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            return os.access(self._directory, os.W_OK)
        except OSError:
            return False


class PostgresStateStore:
    """
    State store backed by a single PostgreSQL key/value table.

    Usage:
        store = PostgresStateStore(Database(DatabaseConfig(url=...)))
        await store.initialize()  # opens the pool, creates the table
    """

    TABLE = "vitalguard_state"

    def __init__(self, db: "Database") -> None:
        self._db = db
        self._table_ready = False
        self._table_lock = asyncio.Lock()

    async def initialize(self) -> None:
        await self._db.initialize()
        await self.ensure_table()

    async def ensure_table(self) -> None:
        async with self._table_lock:
            if self._table_ready:
                return
            await self._db.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.TABLE} (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
                """
            )
            self._table_ready = True

    async def load(self, key: str, fallback: Any = None) -> Any:
        try:
            await self.ensure_table()
            row = await self._db.fetchrow(
                f"SELECT value FROM {self.TABLE} WHERE key = $1", key
            )
        except Exception as e:
            logger.warning(f"Error loading {key} from database: {e}")
            return fallback

        if row is None:
            return fallback

        try:
            return json.loads(row["value"])
        except (TypeError, ValueError) as e:
            logger.warning(f"Error loading {key} from database: {e}")
            return fallback

    async def save(self, key: str, value: Any) -> bool:
        try:
            data = json.dumps(value)
            await self.ensure_table()
            await self._db.execute(
                f"""
                INSERT INTO {self.TABLE} (key, value, updated_at)
                VALUES ($1, $2, NOW())
                ON CONFLICT (key) DO UPDATE
                SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at
                """,
                key,
                data,
            )
            return True
        except Exception as e:
            logger.error(f"Error saving {key} to database: {e}")
            return False

    async def remove(self, key: str) -> None:
        try:
            await self.ensure_table()
            await self._db.execute(f"DELETE FROM {self.TABLE} WHERE key = $1", key)
        except Exception as e:
            logger.error(f"Error removing {key} from database: {e}")

    async def health_check(self) -> bool:
        return await self._db.health_check()

    async def close(self) -> None:
        await self._db.close()


def create_state_store(
    database_url: Optional[str] = None,
    state_dir: Union[str, Path] = "~/.vitalguard",
) -> Union[JsonFileStateStore, PostgresStateStore]:
    """Pick the backend: PostgreSQL when a URL is given, JSON files otherwise."""
    if database_url:
        from .database import Database, DatabaseConfig

        return PostgresStateStore(Database(DatabaseConfig(url=database_url)))
    return JsonFileStateStore(state_dir)
