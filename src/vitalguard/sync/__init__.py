"""
Sync Layer - Pushes local state to the remote collector.

Public API:
    SyncScheduler - Periodic and alert-triggered pushes, one in flight
    SyncSnapshot - Values pushed in one request
    SyncState - Sync bookkeeping
    SyncFailedError - Network error or non-2xx answer
"""

from .cloud_sync import SyncFailedError, SyncScheduler, SyncSnapshot, SyncState

__all__ = [
    "SyncScheduler",
    "SyncSnapshot",
    "SyncState",
    "SyncFailedError",
]
