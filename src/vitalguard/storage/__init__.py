"""
Storage Layer - Persistence of monitor state across restarts.

Public API:
    StateStore - Protocol used by the coordinator
    JsonFileStateStore - One JSON file per key (default)
    PostgresStateStore - Key/value table over asyncpg (DATABASE_URL set)
    Database, DatabaseConfig - Connection pool management
    StorageKeys - Stable key names
    create_state_store - Backend selection
"""

from .database import Database, DatabaseConfig
from .state_store import (
    JsonFileStateStore,
    PostgresStateStore,
    StateStore,
    StorageKeys,
    create_state_store,
)

__all__ = [
    "Database",
    "DatabaseConfig",
    "StateStore",
    "JsonFileStateStore",
    "PostgresStateStore",
    "StorageKeys",
    "create_state_store",
]
