"""
Scheduler - Named, cancellable timers on the asyncio event loop.

Every timer in the monitor goes through here:
- Recurring sensor poll (one per ConnectionMonitor)
- Recurring remote sync
- One-shot delayed sync after an alert

Owning the handles in one place lets state transitions cancel exactly the
timer they started.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[Any]]


class TimerHandle:
    """A scheduled recurring or one-shot callback."""

    def __init__(
        self,
        name: str,
        task: "asyncio.Task[None]",
        interval: float,
        recurring: bool,
    ) -> None:
        self.name = name
        self.interval = interval
        self.recurring = recurring
        self._task = task

    @property
    def active(self) -> bool:
        """Whether the timer can still fire."""
        return not self._task.done()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait for the timer task to finish (after cancel or one-shot fire)."""
        await asyncio.gather(self._task, return_exceptions=True)

    def __repr__(self) -> str:
        kind = "every" if self.recurring else "after"
        return f"<TimerHandle {self.name} {kind} {self.interval}s active={self.active}>"


class Scheduler:
    """
    Owns all timers of the monitor.

    A recurring timer awaits its callback before sleeping again, so a slow
    callback delays the next tick instead of overlapping it. Callback errors
    are logged and the timer keeps running.

    Usage:
        scheduler = Scheduler()
        scheduler.call_every("sensor-poll", 1.0, monitor.poll)
        scheduler.call_later("sync-soon", 2.0, sync.trigger)
        scheduler.cancel("sensor-poll")
        await scheduler.shutdown()
    """

    def __init__(self) -> None:
        self._handles: Dict[str, TimerHandle] = {}

    def call_every(
        self,
        name: str,
        interval: float,
        callback: TimerCallback,
    ) -> TimerHandle:
        """
        Run callback every interval seconds until cancelled.

        Replaces any timer already registered under the same name.
        Must be called from inside the running event loop.
        """
        self.cancel(name)
        task = asyncio.create_task(
            self._recurring(name, interval, callback),
            name=f"timer:{name}",
        )
        handle = TimerHandle(name, task, interval, recurring=True)
        self._handles[name] = handle
        logger.debug(f"Scheduled {name} every {interval}s")
        return handle

    def call_later(
        self,
        name: str,
        delay: float,
        callback: TimerCallback,
    ) -> TimerHandle:
        """
        Run callback once after delay seconds.

        Replaces any timer already registered under the same name.
        """
        self.cancel(name)
        task = asyncio.create_task(
            self._one_shot(name, delay, callback),
            name=f"timer:{name}",
        )
        handle = TimerHandle(name, task, delay, recurring=False)
        self._handles[name] = handle
        logger.debug(f"Scheduled {name} in {delay}s")
        return handle

    def cancel(self, name: str) -> bool:
        """Cancel the named timer. Returns True if one was active."""
        handle = self._handles.pop(name, None)
        if handle is None:
            return False
        was_active = handle.active
        handle.cancel()
        if was_active:
            logger.debug(f"Cancelled timer {name}")
        return was_active

    def is_scheduled(self, name: str) -> bool:
        handle = self._handles.get(name)
        return handle is not None and handle.active

    def get(self, name: str) -> Optional[TimerHandle]:
        return self._handles.get(name)

    @property
    def active_timers(self) -> list[str]:
        return sorted(n for n, h in self._handles.items() if h.active)

    async def shutdown(self) -> None:
        """Cancel every timer and wait for them to finish."""
        handles = list(self._handles.values())
        self._handles.clear()

        for handle in handles:
            handle.cancel()

        if handles:
            await asyncio.gather(*(h.wait() for h in handles))
            logger.info(f"Scheduler stopped ({len(handles)} timers cancelled)")

    async def _recurring(
        self,
        name: str,
        interval: float,
        callback: TimerCallback,
    ) -> None:
        while True:
            await asyncio.sleep(interval)
            await self._run(name, callback)

    async def _one_shot(
        self,
        name: str,
        delay: float,
        callback: TimerCallback,
    ) -> None:
        await asyncio.sleep(delay)
        # Drop our own entry before firing so the callback may reschedule
        handle = self._handles.get(name)
        if handle is not None and handle._task is asyncio.current_task():
            del self._handles[name]
        await self._run(name, callback)

    async def _run(self, name: str, callback: TimerCallback) -> None:
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in timer {name}: {e}")
