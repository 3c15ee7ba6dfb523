"""
Sync layer test fixtures.

IMPORTANT: The collector is always an httpx MockTransport.
Never hit a real endpoint in tests.
"""
import httpx
import pytest

from vitalguard.core.scheduler import Scheduler
from vitalguard.ingestion.models import PatientProfile, Reading
from vitalguard.monitoring.alerting import Alert, AlertKind
from vitalguard.sync.cloud_sync import SyncScheduler, SyncSnapshot

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


class FakeCollector:
    """Records pushes and answers with a configurable status."""

    def __init__(self):
        self.requests = []
        self.status_code = 200
        self.error = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json={"ok": self.status_code < 400})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def collector():
    return FakeCollector()


@pytest.fixture
async def http_client(collector):
    client = httpx.AsyncClient(transport=httpx.MockTransport(collector))
    yield client
    await client.aclose()


@pytest.fixture
async def scheduler():
    sched = Scheduler()
    yield sched
    await sched.shutdown()


@pytest.fixture
def snapshot():
    """Profile, two readings, one read and one unread alert."""
    return SyncSnapshot(
        profile=PatientProfile(id="PAT-42", name="Ana", age=70),
        history=(
            Reading(timestamp=1000, heart_rate=70, spo2=97),
            Reading(timestamp=2000, heart_rate=130, spo2=96),
        ),
        alerts=(
            Alert("2000-1", AlertKind.HEART_RATE, "Abnormal heart rate: 130 bpm", "130 bpm", 2000),
            Alert("1000-0", AlertKind.SPO2, "Low oxygen saturation: 90%", "90%", 1000, read=True),
        ),
    )


@pytest.fixture
def sync(scheduler, http_client, snapshot, clock):
    """SyncScheduler whose timers never fire on their own during a test."""
    return SyncScheduler(
        scheduler=scheduler,
        snapshot_provider=lambda: snapshot,
        sync_interval=60.0,
        sync_delay=60.0,
        client=http_client,
        clock=clock,
    )
