"""
Core - Timers, reading history and component wiring.

This module provides:
    - Scheduler: Named, cancellable asyncio timers
    - HistoryBuffer: Last 50 readings, oldest evicted first

MonitoringCoordinator lives in vitalguard.core.coordinator and is imported
from there; it depends on the ingestion layer, which itself uses Scheduler.
"""

from .history import MAX_HISTORY_POINTS, HistoryBuffer
from .scheduler import Scheduler, TimerHandle

__all__ = [
    "Scheduler",
    "TimerHandle",
    "HistoryBuffer",
    "MAX_HISTORY_POINTS",
]
