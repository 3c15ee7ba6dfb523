"""
Component health for the monitor process.

Reports on the sensor connection, the remote sync and the state store.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Optional

from vitalguard.ingestion.models import ConnectionState, now_ms

if TYPE_CHECKING:
    from vitalguard.ingestion.connection import ConnectionMonitor
    from vitalguard.storage.state_store import StateStore
    from vitalguard.sync.cloud_sync import SyncScheduler

logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    """Health status levels."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    WARNING = "warning"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Result of checking one component."""

    component: str
    status: HealthStatus
    message: str
    latency_ms: Optional[float] = None


@dataclass
class AggregateHealth:
    """Overall system health."""

    status: HealthStatus
    components: List[ComponentHealth] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class HealthChecker:
    """
    Checks health of monitor components.

    Monitors:
    - Sensor connection state and reading staleness
    - Remote sync configuration and age of the last successful push
    - State store accessibility

    Usage:
        checker = HealthChecker(monitor, sync_scheduler, store)
        overall = await checker.check_all()
    """

    def __init__(
        self,
        monitor: Optional["ConnectionMonitor"] = None,
        sync_scheduler: Optional["SyncScheduler"] = None,
        store: Optional["StateStore"] = None,
        reading_staleness_threshold: float = 10.0,
        sync_staleness_threshold: float = 120.0,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        """
        Initialize the health checker.

        Args:
            monitor: Sensor connection monitor
            sync_scheduler: Remote sync scheduler
            store: Persistence gateway
            reading_staleness_threshold: Seconds without a reading to consider stale
            sync_staleness_threshold: Seconds without a successful push to consider stale
            clock: Millisecond clock, injectable for tests
        """
        self._monitor = monitor
        self._sync = sync_scheduler
        self._store = store
        self._reading_staleness_threshold = reading_staleness_threshold
        self._sync_staleness_threshold = sync_staleness_threshold
        self._clock = clock or now_ms

    async def check_sensor(self) -> ComponentHealth:
        """Check the sensor connection and reading staleness."""
        if self._monitor is None:
            return ComponentHealth(
                component="sensor",
                status=HealthStatus.WARNING,
                message="No sensor monitor configured",
            )

        state = self._monitor.state
        if state == ConnectionState.DISCONNECTED:
            return ComponentHealth(
                component="sensor",
                status=HealthStatus.UNHEALTHY,
                message="Sensor is disconnected",
            )

        if state == ConnectionState.AUTHENTICATING:
            return ComponentHealth(
                component="sensor",
                status=HealthStatus.DEGRADED,
                message="Sensor reachable, waiting for PIN",
            )

        last = self._monitor.last_success_at
        if last is not None:
            age_seconds = (self._clock() - last) / 1000
            if age_seconds > self._reading_staleness_threshold:
                return ComponentHealth(
                    component="sensor",
                    status=HealthStatus.DEGRADED,
                    message=(
                        f"Sensor readings are stale ({age_seconds:.0f}s old, "
                        f"{self._monitor.failure_count} consecutive failures)"
                    ),
                )

        return ComponentHealth(
            component="sensor",
            status=HealthStatus.HEALTHY,
            message="Sensor is connected and reporting",
        )

    async def check_sync(self) -> ComponentHealth:
        """Check remote sync configuration and freshness."""
        if self._sync is None:
            return ComponentHealth(
                component="sync",
                status=HealthStatus.WARNING,
                message="No sync scheduler configured",
            )

        state = self._sync.state

        if not state.url_configured:
            return ComponentHealth(
                component="sync",
                status=HealthStatus.WARNING,
                message="Remote sync disabled (no URL configured)",
            )

        if not state.online:
            return ComponentHealth(
                component="sync",
                status=HealthStatus.DEGRADED,
                message="Network is offline",
            )

        if state.last_sync_timestamp is None:
            return ComponentHealth(
                component="sync",
                status=HealthStatus.WARNING,
                message="No successful sync yet",
            )

        age_seconds = (self._clock() - state.last_sync_timestamp) / 1000
        if age_seconds > self._sync_staleness_threshold:
            return ComponentHealth(
                component="sync",
                status=HealthStatus.DEGRADED,
                message=f"Last successful sync was {age_seconds:.0f}s ago",
            )

        return ComponentHealth(
            component="sync",
            status=HealthStatus.HEALTHY,
            message=f"Last successful sync {age_seconds:.0f}s ago",
        )

    async def check_storage(self) -> ComponentHealth:
        """Check the state store."""
        if self._store is None:
            return ComponentHealth(
                component="storage",
                status=HealthStatus.WARNING,
                message="No state store configured (state is not persisted)",
            )

        start_time = time.time()

        try:
            ok = await self._store.health_check()
            latency_ms = (time.time() - start_time) * 1000
        except Exception as e:
            latency_ms = (time.time() - start_time) * 1000
            logger.error(f"Storage health check failed: {e}")
            return ComponentHealth(
                component="storage",
                status=HealthStatus.UNHEALTHY,
                message=f"Storage error: {str(e)}",
                latency_ms=latency_ms,
            )

        if not ok:
            return ComponentHealth(
                component="storage",
                status=HealthStatus.UNHEALTHY,
                message="State store is not accessible",
                latency_ms=latency_ms,
            )

        return ComponentHealth(
            component="storage",
            status=HealthStatus.HEALTHY,
            message="State store is accessible",
            latency_ms=latency_ms,
        )

    async def check_all(self, timeout: float = 3.0) -> AggregateHealth:
        """
        Run every check, each bounded by an equal share of timeout.

        Args:
            timeout: Maximum time for all checks in seconds

        Returns:
            AggregateHealth with all component results
        """
        components = []

        checks = [
            ("sensor", self.check_sensor),
            ("sync", self.check_sync),
            ("storage", self.check_storage),
        ]

        for name, check_func in checks:
            try:
                result = await asyncio.wait_for(
                    check_func(),
                    timeout=timeout / len(checks),
                )
                components.append(result)
            except asyncio.TimeoutError:
                components.append(ComponentHealth(
                    component=name,
                    status=HealthStatus.UNHEALTHY,
                    message=f"{name} check timed out",
                ))
            except Exception as e:
                components.append(ComponentHealth(
                    component=name,
                    status=HealthStatus.UNHEALTHY,
                    message=f"{name} check failed: {str(e)}",
                ))

        return AggregateHealth(
            status=self._calculate_overall_status(components),
            components=components,
        )

    def _calculate_overall_status(
        self,
        components: List[ComponentHealth],
    ) -> HealthStatus:
        """Worst component status wins; WARNING counts as DEGRADED overall."""
        statuses = [c.status for c in components]

        if HealthStatus.UNHEALTHY in statuses:
            return HealthStatus.UNHEALTHY

        if HealthStatus.DEGRADED in statuses or HealthStatus.WARNING in statuses:
            return HealthStatus.DEGRADED

        return HealthStatus.HEALTHY
