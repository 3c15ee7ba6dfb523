"""
Shared fixtures for end-to-end tests.

This file wires real components together, unlike the component-specific
fixtures in src/vitalguard/{component}/tests/conftest.py. Only the two network
edges are faked: the sensor client and the remote collector.
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from vitalguard.core.coordinator import MonitoringCoordinator
from vitalguard.core.history import HistoryBuffer
from vitalguard.core.scheduler import Scheduler
from vitalguard.ingestion.client import SensorClient, SensorUnreachableError
from vitalguard.ingestion.connection import ConnectionMonitor
from vitalguard.monitoring.alerting import AlertEngine
from vitalguard.storage.state_store import JsonFileStateStore
from vitalguard.sync.cloud_sync import SyncScheduler

SENSOR_ADDRESS = "192.168.1.100"
COLLECTOR_URL = "http://collector.test/api/vitals"


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class FakeSensor:
    """
    Scriptable sensor answers.

    Each poll pops the next queued body; an exception instance in the queue
    is raised instead. An empty queue repeats the last body.
    """

    def __init__(self):
        self.reachable = True
        self.queue = []
        self.last = {"heartRate": 72, "spO2": 98, "temperature": 36.6}

    def push(self, *bodies):
        self.queue.extend(bodies)

    async def probe(self, address):
        return self.reachable

    async def fetch_data(self, address):
        if self.queue:
            item = self.queue.pop(0)
            if isinstance(item, Exception):
                raise item
            self.last = item
        return dict(self.last)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sensor():
    return FakeSensor()


@pytest.fixture
def sensor_client(sensor):
    client = AsyncMock(spec=SensorClient)
    client.probe = AsyncMock(side_effect=sensor.probe)
    client.fetch_data = AsyncMock(side_effect=sensor.fetch_data)
    return client


@pytest.fixture
def unreachable():
    return SensorUnreachableError("timeout")


@pytest.fixture
def collector_requests():
    return []


@pytest.fixture
async def collector_client(collector_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        collector_requests.append(request)
        return httpx.Response(200, json={"ok": True})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    yield client
    await client.aclose()


@pytest.fixture
def state_dir(tmp_path):
    return tmp_path / "state"


@pytest.fixture
async def build_monitor(sensor_client, collector_client, state_dir, clock):
    """
    Factory for a fully wired monitor sharing one state directory.

    Calling it twice simulates a restart. Timers are long so nothing fires
    on its own; tests drive polls and syncs explicitly.
    """
    schedulers = []

    async def _build(sync_delay: float = 60.0):
        scheduler = Scheduler()
        schedulers.append(scheduler)

        monitor = ConnectionMonitor(
            client=sensor_client,
            scheduler=scheduler,
            address=SENSOR_ADDRESS,
            poll_interval=60.0,
            clock=clock,
        )
        sync = SyncScheduler(
            scheduler=scheduler,
            sync_interval=60.0,
            sync_delay=sync_delay,
            client=collector_client,
            clock=clock,
        )
        coordinator = MonitoringCoordinator(
            monitor=monitor,
            history=HistoryBuffer(),
            alert_engine=AlertEngine(clock=clock),
            sync_scheduler=sync,
            store=JsonFileStateStore(state_dir),
        )
        await coordinator.restore()
        return coordinator, monitor, sync, scheduler

    yield _build

    for scheduler in schedulers:
        await scheduler.shutdown()
