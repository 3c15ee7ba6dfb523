"""
Core test fixtures.

Builds a coordinator from real components around a mocked sensor client and
an httpx MockTransport collector.
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from vitalguard.core.coordinator import MonitoringCoordinator
from vitalguard.core.history import HistoryBuffer
from vitalguard.core.scheduler import Scheduler
from vitalguard.ingestion.client import SensorClient
from vitalguard.ingestion.connection import ConnectionMonitor
from vitalguard.ingestion.models import Reading
from vitalguard.monitoring.alerting import AlertEngine
from vitalguard.storage.state_store import JsonFileStateStore
from vitalguard.sync.cloud_sync import SyncScheduler


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_reading(clock):
    """Reading factory; each call gets a fresh timestamp unless one is given."""
    def _make(timestamp=None, **values):
        defaults = {
            "heart_rate": 72,
            "spo2": 98,
            "temperature": 36.6,
            "systolic_bp": 118,
            "diastolic_bp": 76,
            "battery_level": 90,
            "is_moving": False,
        }
        defaults.update(values)
        ts = timestamp if timestamp is not None else clock.advance(1000)
        return Reading(timestamp=ts, **defaults)
    return _make


@pytest.fixture
async def scheduler():
    sched = Scheduler()
    yield sched
    await sched.shutdown()


@pytest.fixture
def collector_requests():
    """Requests received by the fake collector."""
    return []


@pytest.fixture
async def collector_client(collector_requests):
    """httpx client whose transport records requests and answers 200."""
    def handler(request: httpx.Request) -> httpx.Response:
        collector_requests.append(request)
        return httpx.Response(200, json={"ok": True})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    yield client
    await client.aclose()


@pytest.fixture
def mock_sensor_client():
    client = AsyncMock(spec=SensorClient)
    client.probe = AsyncMock(return_value=True)
    client.fetch_data = AsyncMock(return_value={"heartRate": 72, "spO2": 98, "temperature": 36.6})
    return client


@pytest.fixture
def monitor(mock_sensor_client, scheduler, clock):
    return ConnectionMonitor(
        client=mock_sensor_client,
        scheduler=scheduler,
        address="192.168.1.100",
        poll_interval=60.0,
        clock=clock,
    )


@pytest.fixture
def sync_scheduler(scheduler, collector_client, clock):
    return SyncScheduler(
        scheduler=scheduler,
        sync_interval=60.0,
        sync_delay=60.0,
        client=collector_client,
        clock=clock,
    )


@pytest.fixture
def store(tmp_path):
    return JsonFileStateStore(tmp_path / "state")


@pytest.fixture
def coordinator(monitor, sync_scheduler, store, clock):
    return MonitoringCoordinator(
        monitor=monitor,
        history=HistoryBuffer(),
        alert_engine=AlertEngine(clock=clock),
        sync_scheduler=sync_scheduler,
        store=store,
    )
