"""
Test fixtures for ingestion layer.

IMPORTANT: All sensor calls must be mocked.
Never hit a real device in tests.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from vitalguard.core.scheduler import Scheduler
from vitalguard.ingestion.client import SensorClient
from vitalguard.ingestion.connection import ConnectionMonitor
from vitalguard.ingestion.models import Reading


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


# =============================================================================
# Time Fixtures
# =============================================================================


@pytest.fixture
def clock():
    """Controllable millisecond clock."""
    return FakeClock()


# =============================================================================
# Payload Fixtures
# =============================================================================


@pytest.fixture
def sample_payload():
    """A complete /data response body."""
    return {
        "heartRate": 72,
        "spO2": 98,
        "temperature": 36.6,
        "systolicBP": 118,
        "diastolicBP": 76,
        "batteryLevel": 88,
        "isMoving": False,
    }


@pytest.fixture
def sample_reading(clock, sample_payload):
    """A reading built from the complete payload."""
    return Reading.from_payload(sample_payload, Reading.empty(0), clock())


# =============================================================================
# Mock Fixtures
# =============================================================================


def _make_response(status: int = 200, body=None, json_error: Exception = None):
    """Mock aiohttp response usable as `async with session.get(...) as r`."""
    response = MagicMock()
    response.status = status
    if json_error is not None:
        response.json = AsyncMock(side_effect=json_error)
    else:
        response.json = AsyncMock(return_value=body)

    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return ctx


@pytest.fixture
def make_response():
    """Factory for mock aiohttp responses."""
    return _make_response


@pytest.fixture
def mock_aiohttp_session():
    """Mock aiohttp ClientSession."""
    session = MagicMock()
    session.close = AsyncMock()
    return session


@pytest.fixture
def mock_sensor_client(sample_payload):
    """SensorClient that is reachable and returns the sample payload."""
    client = AsyncMock(spec=SensorClient)
    client.probe = AsyncMock(return_value=True)
    client.fetch_data = AsyncMock(return_value=dict(sample_payload))
    return client


@pytest.fixture
async def scheduler():
    """Real scheduler, shut down after the test."""
    sched = Scheduler()
    yield sched
    await sched.shutdown()


@pytest.fixture
def monitor(mock_sensor_client, scheduler, clock):
    """ConnectionMonitor with a long poll interval so timers never fire."""
    return ConnectionMonitor(
        client=mock_sensor_client,
        scheduler=scheduler,
        address="192.168.1.100",
        poll_interval=60.0,
        clock=clock,
    )
