"""
Cloud Sync - Pushes local state to the remote collector.

The push is a full snapshot (profile, latest reading, unread alerts), so it is
cheap and idempotent for the collector. Failed pushes are not retried on their
own: the next periodic trigger sends a fresh snapshot.

Triggers:
- Periodic: every sync_interval while online AND setup complete AND URL set
- Soon: once, sync_delay after a new alert, while online AND URL set

At most one push is in flight; a trigger that arrives meanwhile is dropped.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

import httpx

from vitalguard.core.scheduler import Scheduler
from vitalguard.ingestion.models import PatientProfile, Reading, now_ms
from vitalguard.monitoring.alerting import Alert

logger = logging.getLogger(__name__)


class SyncFailedError(Exception):
    """Remote collector push failed (network error or non-2xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class SyncSnapshot:
    """Plain-value view of the local state at one instant."""

    profile: PatientProfile
    history: Tuple[Reading, ...] = ()
    alerts: Tuple[Alert, ...] = ()

    def to_payload(self, timestamp: int) -> dict:
        """Collector body: latest reading only, unread alerts only."""
        return {
            "patientId": self.profile.id,
            "timestamp": timestamp,
            "profile": self.profile.to_dict(),
            "vitals": self.history[-1].to_dict() if self.history else None,
            "alerts": [a.to_dict() for a in self.alerts if not a.read],
        }


@dataclass
class SyncState:
    """Sync bookkeeping. Written only by SyncScheduler."""

    remote_url: Optional[str] = None
    last_sync_timestamp: Optional[int] = None
    in_flight: bool = False
    online: bool = True
    setup_complete: bool = False
    attempts: int = 0
    failures: int = 0

    @property
    def url_configured(self) -> bool:
        return bool(self.remote_url and self.remote_url.strip())


SnapshotProvider = Callable[[], SyncSnapshot]


class SyncScheduler:
    """
    Reconciles local state with the remote collector.

    Usage:
        sync = SyncScheduler(scheduler, snapshot_provider=coordinator.snapshot)
        sync.set_remote_url("https://collector.example/api/vitals")
        sync.set_setup_complete(True)   # periodic timer starts

        sync.request_sync_soon()        # after an alert
        await sync.trigger()            # manual
    """

    PERIODIC_TIMER = "sync-periodic"
    SOON_TIMER = "sync-soon"

    def __init__(
        self,
        scheduler: Scheduler,
        snapshot_provider: Optional[SnapshotProvider] = None,
        remote_url: Optional[str] = None,
        sync_interval: float = 30.0,
        sync_delay: float = 2.0,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        """
        Initialize the sync scheduler.

        Args:
            scheduler: Owner of the periodic and one-shot timers
            snapshot_provider: Returns the state to push at trigger time
            remote_url: Collector URL (blank disables sync)
            sync_interval: Seconds between periodic pushes
            sync_delay: Delay of the one-shot push after an alert
            timeout: HTTP timeout for the push
            client: Shared httpx client (a new one per push if None)
            clock: Millisecond clock, injectable for tests
        """
        self._scheduler = scheduler
        self._snapshot_provider = snapshot_provider
        self._sync_interval = sync_interval
        self._sync_delay = sync_delay
        self._timeout = timeout
        self._client = client
        self._clock = clock or now_ms

        self._state = SyncState(remote_url=remote_url)

    @property
    def state(self) -> SyncState:
        """Copy of the current sync state."""
        return SyncState(**vars(self._state))

    @property
    def last_sync_timestamp(self) -> Optional[int]:
        return self._state.last_sync_timestamp

    @property
    def in_flight(self) -> bool:
        return self._state.in_flight

    @property
    def remote_url(self) -> Optional[str]:
        return self._state.remote_url

    @property
    def periodic_active(self) -> bool:
        return self._scheduler.is_scheduled(self.PERIODIC_TIMER)

    def set_snapshot_provider(self, provider: SnapshotProvider) -> None:
        self._snapshot_provider = provider

    # =========================================================================
    # Preconditions
    # =========================================================================

    def set_remote_url(self, url: Optional[str]) -> None:
        self._state.remote_url = url.strip() if url else None
        self.refresh()

    def set_online(self, online: bool) -> None:
        if self._state.online != online:
            logger.info(f"Network is {'online' if online else 'offline'}")
        self._state.online = online
        self.refresh()

    def set_setup_complete(self, complete: bool) -> None:
        self._state.setup_complete = complete
        self.refresh()

    def refresh(self) -> None:
        """Start or cancel the periodic timer to match the preconditions."""
        s = self._state
        should_run = s.online and s.setup_complete and s.url_configured

        if should_run and not self.periodic_active:
            self._scheduler.call_every(
                self.PERIODIC_TIMER,
                self._sync_interval,
                self.trigger,
            )
            logger.info(f"Periodic sync started (interval={self._sync_interval}s)")
        elif not should_run and self._scheduler.cancel(self.PERIODIC_TIMER):
            logger.info("Periodic sync stopped")

        if not (s.online and s.url_configured):
            self._scheduler.cancel(self.SOON_TIMER)

    def reset(self) -> None:
        """Forget the last successful sync."""
        self._state.last_sync_timestamp = None

    # =========================================================================
    # Triggers
    # =========================================================================

    def request_sync_soon(self) -> bool:
        """
        Schedule a one-shot push after sync_delay.

        Returns:
            True if a push is now pending
        """
        s = self._state
        if not (s.online and s.url_configured):
            return False

        if self._scheduler.is_scheduled(self.SOON_TIMER):
            return True

        self._scheduler.call_later(self.SOON_TIMER, self._sync_delay, self.trigger)
        return True

    async def trigger(self) -> bool:
        """
        Push a fresh snapshot if nothing else is in flight.

        Returns:
            True if the push succeeded; False if dropped or failed
        """
        s = self._state

        if s.in_flight:
            logger.debug("Sync dropped: another sync is in flight")
            return False
        if not s.online or not s.url_configured:
            logger.debug("Sync dropped: offline or no remote URL")
            return False
        if self._snapshot_provider is None:
            logger.warning("Sync dropped: no snapshot provider")
            return False

        s.in_flight = True
        try:
            success = await self.sync(s.remote_url or "", self._snapshot_provider())
        finally:
            s.in_flight = False

        if success:
            s.last_sync_timestamp = self._clock()
        return success

    async def sync(self, url: str, snapshot: SyncSnapshot) -> bool:
        """
        Push one snapshot to the collector.

        Args:
            url: Collector URL; blank means sync is disabled
            snapshot: State to push

        Returns:
            True on a 2xx answer. Failures are logged, never raised.
        """
        if not url or not url.strip():
            logger.debug("Sync skipped: no remote URL configured")
            return False

        self._state.attempts += 1
        payload = snapshot.to_payload(self._clock())

        try:
            await self._post(url.strip(), payload)
        except asyncio.CancelledError:
            raise
        except SyncFailedError as e:
            self._state.failures += 1
            logger.warning(f"Cloud sync failed: {e}")
            return False

        logger.info(
            f"Synced to {url} ({len(payload['alerts'])} unread alerts)"
        )
        return True

    async def _post(self, url: str, payload: dict) -> None:
        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, json=payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise SyncFailedError(f"{type(e).__name__}: {e}")

        if not response.is_success:
            raise SyncFailedError(
                f"HTTP {response.status_code}",
                status_code=response.status_code,
            )
