"""
Monitoring layer test fixtures.

Tests alerting, notifications, health checks, and operator API endpoints.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from vitalguard.ingestion.models import ConnectionState, PatientProfile, Reading
from vitalguard.monitoring.alerting import Alert, AlertEngine, AlertKind
from vitalguard.monitoring.dashboard import create_app
from vitalguard.monitoring.health_checker import HealthChecker
from vitalguard.monitoring.notifications import TelegramNotificationSink
from vitalguard.sync.cloud_sync import SyncState


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
    def _make(**values):
        defaults = {
            "heart_rate": 72,
            "spo2": 98,
            "temperature": 36.6,
            "systolic_bp": 118,
            "diastolic_bp": 76,
        }
        defaults.update(values)
        return Reading(timestamp=clock(), **defaults)
    return _make


# =============================================================================
# Alerting Fixtures
# =============================================================================

@pytest.fixture
def mock_telegram_api():
    """Mock Telegram Bot API."""
    api = MagicMock()
    api.send_message = MagicMock(return_value={"ok": True})
    return api


@pytest.fixture
def telegram_sink(mock_telegram_api):
    """Notification sink with mocked Telegram."""
    return TelegramNotificationSink(
        bot_token="test_token",
        chat_id="test_chat",
        _telegram_api=mock_telegram_api,
    )


@pytest.fixture
def engine(clock, telegram_sink):
    return AlertEngine(notification_sink=telegram_sink, clock=clock)


# =============================================================================
# Health Fixtures
# =============================================================================

@pytest.fixture
def mock_monitor(clock):
    """Connected monitor with a fresh reading."""
    monitor = MagicMock()
    monitor.state = ConnectionState.CONNECTED
    monitor.address = "192.168.1.100"
    monitor.failure_count = 0
    monitor.last_success_at = clock() - 1000
    monitor.authenticate = AsyncMock()
    monitor.probe = AsyncMock(return_value=True)
    return monitor


@pytest.fixture
def mock_sync(clock):
    """Sync scheduler that pushed 10 seconds ago."""
    sync = MagicMock()
    sync.state = SyncState(
        remote_url="http://collector.test/api",
        last_sync_timestamp=clock() - 10_000,
        online=True,
        setup_complete=True,
    )
    return sync


@pytest.fixture
def mock_store():
    store = MagicMock()
    store.health_check = AsyncMock(return_value=True)
    return store


@pytest.fixture
def health_checker(mock_monitor, mock_sync, mock_store, clock):
    return HealthChecker(
        monitor=mock_monitor,
        sync_scheduler=mock_sync,
        store=mock_store,
        clock=clock,
    )


# =============================================================================
# Dashboard Fixtures
# =============================================================================

@pytest.fixture
def sample_alerts():
    return (
        Alert("2-1", AlertKind.HEART_RATE, "Abnormal heart rate: 130 bpm", "130 bpm", 2),
        Alert("1-0", AlertKind.SPO2, "Low oxygen saturation: 90%", "90%", 1, read=True),
    )


@pytest.fixture
def mock_coordinator(sample_alerts):
    """Coordinator with canned projections and async operator actions."""
    coordinator = MagicMock()
    coordinator.connection_state = ConnectionState.CONNECTED
    coordinator.current_reading = Reading(timestamp=5, heart_rate=130, spo2=97)
    coordinator.history = (
        Reading(timestamp=4, heart_rate=80),
        Reading(timestamp=5, heart_rate=130, spo2=97),
    )
    coordinator.alerts = sample_alerts
    coordinator.profile = PatientProfile(id="PAT-1", name="Ana", age=70)
    coordinator.advisor_api_key = ""
    coordinator.status.return_value = {
        "connection_state": "connected",
        "sensor_address": "192.168.1.100",
        "remote_url": "http://collector.test/api",
        "last_sync_at": None,
        "history_points": 2,
    }
    coordinator.clear_alerts = AsyncMock()
    coordinator.clear_history = AsyncMock()
    coordinator.reset_local_data = AsyncMock()
    coordinator.mark_alert_read = AsyncMock(return_value=True)
    coordinator.update_settings = AsyncMock()
    coordinator.update_profile = AsyncMock()
    coordinator.complete_setup = AsyncMock(return_value=True)
    coordinator.sync_now = AsyncMock(return_value=True)
    coordinator.set_network_online = AsyncMock()
    return coordinator


@pytest.fixture
def app(mock_coordinator, mock_monitor, health_checker):
    """Flask test app."""
    return create_app(
        coordinator=mock_coordinator,
        monitor=mock_monitor,
        health_checker=health_checker,
        testing=True,
    )


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()
