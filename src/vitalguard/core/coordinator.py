"""
Monitoring Coordinator - Wires the monitor components together.

Per successful poll tick, strictly in this order:
1. HistoryBuffer.append(reading)
2. AlertEngine.evaluate(reading)
3. SyncScheduler.request_sync_soon() if any alert was produced
4. Persist history (and alerts when they changed)

Poll failures never reach the coordinator; ConnectionMonitor keeps its own
counters. Each piece of state has exactly one writer:
    - connection state: ConnectionMonitor
    - history: HistoryBuffer
    - alerts: AlertEngine
    - sync state and remote URL: SyncScheduler
    - profile, setup flag, advisor key: MonitoringCoordinator
Everything exposed here is a snapshot.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Tuple

from vitalguard.ingestion.models import ConnectionState, PatientProfile, Reading
from vitalguard.monitoring.alerting import Alert, AlertEngine
from vitalguard.storage.state_store import StorageKeys
from vitalguard.sync.cloud_sync import SyncScheduler, SyncSnapshot

from .history import HistoryBuffer

if TYPE_CHECKING:
    from vitalguard.ingestion.connection import ConnectionMonitor
    from vitalguard.storage.state_store import StateStore

logger = logging.getLogger(__name__)


@dataclass
class CoordinatorStats:
    """Runtime statistics for the coordinator."""

    readings_received: int = 0
    readings_dropped: int = 0
    alerts_raised: int = 0
    sync_requests: int = 0


class MonitoringCoordinator:
    """
    Composition of monitor, history, alert engine and sync scheduler.

    Usage:
        coordinator = MonitoringCoordinator(
            monitor=monitor,
            history=HistoryBuffer(),
            alert_engine=AlertEngine(),
            sync_scheduler=sync,
            store=JsonFileStateStore("~/.vitalguard"),
        )
        await coordinator.restore()
        # monitor now feeds coordinator.handle_reading on every poll
    """

    def __init__(
        self,
        monitor: "ConnectionMonitor",
        history: HistoryBuffer,
        alert_engine: AlertEngine,
        sync_scheduler: SyncScheduler,
        store: Optional["StateStore"] = None,
        profile: Optional[PatientProfile] = None,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            monitor: Sensor connection monitor (source of readings)
            history: Bounded reading history
            alert_engine: Threshold evaluator and alert log
            sync_scheduler: Remote collector push scheduler
            store: Persistence gateway (state is in-memory only if None)
            profile: Initial patient profile
        """
        self._monitor = monitor
        self._history = history
        self._alert_engine = alert_engine
        self._sync = sync_scheduler
        self._store = store

        self._profile = profile or PatientProfile()
        self._setup_complete = False
        self._advisor_api_key = ""
        self._stats = CoordinatorStats()

        self._monitor.set_reading_handler(self.handle_reading)
        self._sync.set_snapshot_provider(self.snapshot)

    # =========================================================================
    # Read-only projections
    # =========================================================================

    @property
    def stats(self) -> CoordinatorStats:
        return self._stats

    @property
    def current_reading(self) -> Reading:
        return self._monitor.last_reading

    @property
    def connection_state(self) -> ConnectionState:
        return self._monitor.state

    @property
    def alerts(self) -> Tuple[Alert, ...]:
        return self._alert_engine.alerts

    @property
    def history(self) -> Tuple[Reading, ...]:
        return self._history.snapshot()

    @property
    def profile(self) -> PatientProfile:
        return self._profile

    @property
    def setup_complete(self) -> bool:
        return self._setup_complete

    @property
    def advisor_api_key(self) -> str:
        return self._advisor_api_key

    def snapshot(self) -> SyncSnapshot:
        """State handed to the sync scheduler at push time."""
        return SyncSnapshot(
            profile=self._profile,
            history=self._history.snapshot(),
            alerts=self._alert_engine.alerts,
        )

    def status(self) -> dict[str, Any]:
        """Summary for the operator API."""
        sync_state = self._sync.state
        return {
            "connection_state": self._monitor.state.value,
            "sensor_address": self._monitor.address,
            "failure_count": self._monitor.failure_count,
            "last_reading_at": self._monitor.last_success_at,
            "setup_complete": self._setup_complete,
            "online": sync_state.online,
            "remote_url": sync_state.remote_url or "",
            "syncing": sync_state.in_flight,
            "last_sync_at": sync_state.last_sync_timestamp,
            "periodic_sync": self._sync.periodic_active,
            "history_points": len(self._history),
            "alert_count": len(self._alert_engine.alerts),
            "unread_alerts": self._alert_engine.unread_count,
        }

    # =========================================================================
    # Poll tick
    # =========================================================================

    async def handle_reading(self, reading: Reading) -> list[Alert]:
        """
        Process one successful poll.

        Returns:
            Alerts produced by this reading
        """
        self._stats.readings_received += 1

        if not self._history.append(reading):
            self._stats.readings_dropped += 1

        new_alerts = self._alert_engine.evaluate(reading)

        if new_alerts:
            self._stats.alerts_raised += len(new_alerts)
            if self._sync.request_sync_soon():
                self._stats.sync_requests += 1

        await self._save_history()
        if new_alerts:
            await self._save_alerts()

        return new_alerts

    # =========================================================================
    # Operator actions
    # =========================================================================

    async def complete_setup(self, profile: PatientProfile) -> bool:
        """
        Finish onboarding.

        Returns:
            False if the profile lacks a name or an age
        """
        if not profile.is_complete:
            logger.info("Setup not completed: profile needs a name and an age")
            return False

        self._profile = profile
        self._setup_complete = True
        self._sync.set_setup_complete(True)

        await self._save(StorageKeys.PROFILE, profile.to_dict())
        await self._save(StorageKeys.SETUP_COMPLETE, True)
        logger.info(f"Setup complete for patient {profile.id}")
        return True

    async def update_profile(self, profile: PatientProfile) -> None:
        self._profile = profile
        await self._save(StorageKeys.PROFILE, profile.to_dict())

    async def update_settings(
        self,
        sensor_address: Optional[str] = None,
        remote_url: Optional[str] = None,
        advisor_api_key: Optional[str] = None,
    ) -> None:
        """Update configuration fields. None leaves a field unchanged."""
        if sensor_address is not None:
            self._monitor.address = sensor_address
            await self._save(StorageKeys.SENSOR_ADDRESS, self._monitor.address)

        if remote_url is not None:
            self._sync.set_remote_url(remote_url)
            await self._save(StorageKeys.REMOTE_URL, self._sync.remote_url or "")

        if advisor_api_key is not None:
            self._advisor_api_key = advisor_api_key.strip()
            await self._save(StorageKeys.ADVISOR_API_KEY, self._advisor_api_key)

    async def set_network_online(self, online: bool) -> None:
        self._sync.set_online(online)

    async def sync_now(self) -> bool:
        """Manual push, subject to the same guards as the timers."""
        return await self._sync.trigger()

    async def mark_alert_read(self, alert_id: str) -> bool:
        changed = self._alert_engine.mark_read(alert_id)
        if changed:
            await self._save_alerts()
        return changed

    async def clear_alerts(self) -> None:
        self._alert_engine.clear()
        await self._save_alerts()
        logger.info("Alerts cleared")

    async def clear_history(self) -> None:
        self._history.clear()
        await self._save_history()
        logger.info("History cleared")

    async def reset_local_data(self) -> None:
        """Erase history, alerts and the last sync time."""
        self._history.clear()
        self._alert_engine.clear()
        self._sync.reset()

        if self._store is not None:
            await self._store.remove(StorageKeys.HISTORY)
            await self._store.remove(StorageKeys.ALERTS)
        logger.info("Local data reset")

    # =========================================================================
    # Persistence
    # =========================================================================

    async def restore(self) -> None:
        """Load persisted state. Unreadable entries fall back to defaults."""
        if self._store is None:
            return

        store = self._store

        raw_profile = await store.load(StorageKeys.PROFILE, None)
        if raw_profile:
            try:
                self._profile = PatientProfile.from_dict(raw_profile)
            except ValueError as e:
                logger.warning(f"Ignoring stored profile: {e}")

        raw_history = await store.load(StorageKeys.HISTORY, [])
        readings = self._parse_list(raw_history, Reading.from_dict, "history")
        self._history.load(readings)
        if self._history.latest is not None:
            self._monitor.restore_last_reading(self._history.latest)

        raw_alerts = await store.load(StorageKeys.ALERTS, [])
        self._alert_engine.load(self._parse_list(raw_alerts, Alert.from_dict, "alerts"))

        address = await store.load(StorageKeys.SENSOR_ADDRESS, None)
        if isinstance(address, str) and address:
            self._monitor.address = address

        remote_url = await store.load(StorageKeys.REMOTE_URL, None)
        if isinstance(remote_url, str):
            self._sync.set_remote_url(remote_url)

        advisor_key = await store.load(StorageKeys.ADVISOR_API_KEY, "")
        if isinstance(advisor_key, str):
            self._advisor_api_key = advisor_key

        self._setup_complete = bool(await store.load(StorageKeys.SETUP_COMPLETE, False))
        self._sync.set_setup_complete(self._setup_complete)

        logger.info(
            f"Restored state: {len(self._history)} readings, "
            f"{len(self._alert_engine.alerts)} alerts, "
            f"setup={'complete' if self._setup_complete else 'pending'}"
        )

    @staticmethod
    def _parse_list(raw: Any, parse, label: str) -> list:
        if not isinstance(raw, list):
            return []
        items = []
        for entry in raw:
            try:
                items.append(parse(entry))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable {label} entry: {e}")
        return items

    async def _save(self, key: str, value: Any) -> None:
        if self._store is not None:
            await self._store.save(key, value)

    async def _save_history(self) -> None:
        await self._save(
            StorageKeys.HISTORY,
            [r.to_dict() for r in self._history.snapshot()],
        )

    async def _save_alerts(self) -> None:
        await self._save(
            StorageKeys.ALERTS,
            [a.to_dict() for a in self._alert_engine.alerts],
        )
