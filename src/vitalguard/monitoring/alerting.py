"""
Alert Engine for vital-sign thresholds.

Turns each reading into zero or more alerts with deduplication, and passes
every new alert to the notification sink.
"""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple

from vitalguard.ingestion.models import Reading, now_ms

from .notifications import NotificationSink

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "VitalGuard Alert"


class AlertKind(str, Enum):
    """Signal an alert is about."""
    HEART_RATE = "heartRate"
    SPO2 = "spo2"
    TEMPERATURE = "temperature"
    BP = "bp"


@dataclass(frozen=True)
class AlertThresholds:
    """
    Static alert policy.

    The blood-pressure limits are part of the configured policy but no rule
    evaluates them yet.
    """

    fever_critical: float = 38.0
    fever_warning: float = 37.5
    heart_rate_critical_max: int = 120
    heart_rate_critical_min: int = 45
    spo2_critical: int = 92
    systolic_bp_critical: int = 140
    diastolic_bp_critical: int = 90


@dataclass(frozen=True)
class Alert:
    """A fired alert. Only `read` changes after insertion."""

    id: str
    kind: AlertKind
    message: str
    value: str
    timestamp: int
    read: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.kind.value,
            "message": self.message,
            "value": self.value,
            "timestamp": self.timestamp,
            "read": self.read,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Alert":
        return cls(
            id=str(data["id"]),
            kind=AlertKind(data.get("type") or data.get("kind")),
            message=str(data.get("message", "")),
            value=str(data.get("value", "")),
            timestamp=int(data.get("timestamp", 0)),
            read=bool(data.get("read", False)),
        )


def _fmt(value: float) -> str:
    """Render 38.5 as '38.5' and 130.0 as '130'."""
    return f"{value:g}"


class AlertEngine:
    """
    Evaluates readings against thresholds and keeps the alert log.

    Deduplication:
        A new alert is dropped when the newest stored alert has the same
        message and is younger than the dedup window. Only the single newest
        alert is compared, so an unrelated alert in between lets the same
        message through again.

    Usage:
        engine = AlertEngine(notification_sink=TelegramNotificationSink(...))

        new_alerts = engine.evaluate(reading)
        if new_alerts:
            sync_scheduler.request_sync_soon()
    """

    DEDUP_WINDOW_MS = 60_000

    def __init__(
        self,
        thresholds: Optional[AlertThresholds] = None,
        notification_sink: Optional[NotificationSink] = None,
        dedup_window_ms: int = DEDUP_WINDOW_MS,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        """
        Initialize the alert engine.

        Args:
            thresholds: Alert policy (defaults to AlertThresholds())
            notification_sink: Where new alerts are announced (optional)
            dedup_window_ms: Suppression window for identical messages
            clock: Millisecond clock, injectable for tests
        """
        self._thresholds = thresholds or AlertThresholds()
        self._sink = notification_sink
        self._dedup_window_ms = dedup_window_ms
        self._clock = clock or now_ms
        self._sequence = itertools.count()

        # Newest first
        self._alerts: List[Alert] = []

    @property
    def thresholds(self) -> AlertThresholds:
        return self._thresholds

    @property
    def alerts(self) -> Tuple[Alert, ...]:
        """Snapshot of all alerts, newest first."""
        return tuple(self._alerts)

    def unread(self) -> Tuple[Alert, ...]:
        return tuple(a for a in self._alerts if not a.read)

    @property
    def unread_count(self) -> int:
        return sum(1 for a in self._alerts if not a.read)

    def check(self, reading: Reading) -> List[Tuple[AlertKind, str, str]]:
        """
        Apply the threshold rules without touching the log.

        Returns:
            (kind, message, value) for every rule the reading breaks
        """
        t = self._thresholds
        hits: List[Tuple[AlertKind, str, str]] = []

        temp = _fmt(reading.temperature)
        if reading.temperature > t.fever_critical:
            hits.append((
                AlertKind.TEMPERATURE,
                f"Critical temperature: {temp}°C",
                f"{temp}°C",
            ))
        elif reading.temperature > t.fever_warning:
            hits.append((
                AlertKind.TEMPERATURE,
                f"Fever detected: {temp}°C",
                f"{temp}°C",
            ))

        hr = reading.heart_rate
        if hr > t.heart_rate_critical_max or 0 < hr < t.heart_rate_critical_min:
            hits.append((
                AlertKind.HEART_RATE,
                f"Abnormal heart rate: {_fmt(hr)} bpm",
                f"{_fmt(hr)} bpm",
            ))

        if 0 < reading.spo2 < t.spo2_critical:
            hits.append((
                AlertKind.SPO2,
                f"Low oxygen saturation: {_fmt(reading.spo2)}%",
                f"{_fmt(reading.spo2)}%",
            ))

        return hits

    def evaluate(self, reading: Reading) -> List[Alert]:
        """
        Evaluate a reading and record the resulting alerts.

        Returns:
            Alerts that were recorded (suppressed duplicates excluded),
            in insertion order
        """
        added = []
        for kind, message, value in self.check(reading):
            alert = self._add(kind, message, value)
            if alert is not None:
                added.append(alert)
        return added

    def mark_read(self, alert_id: str) -> bool:
        """Mark one alert as read. Returns False if unknown or already read."""
        for i, alert in enumerate(self._alerts):
            if alert.id == alert_id:
                if alert.read:
                    return False
                self._alerts[i] = replace(alert, read=True)
                return True
        return False

    def mark_all_read(self) -> int:
        count = 0
        for i, alert in enumerate(self._alerts):
            if not alert.read:
                self._alerts[i] = replace(alert, read=True)
                count += 1
        return count

    def clear(self) -> None:
        self._alerts.clear()

    def load(self, alerts: Iterable[Alert]) -> int:
        """Replace the log with restored alerts (expected newest first)."""
        self._alerts = list(alerts)
        return len(self._alerts)

    def _add(self, kind: AlertKind, message: str, value: str) -> Optional[Alert]:
        now = self._clock()

        if self._is_duplicate(message, now):
            logger.debug(f"Deduplicated alert: {message}")
            return None

        alert = Alert(
            id=f"{now}-{next(self._sequence)}",
            kind=kind,
            message=message,
            value=value,
            timestamp=now,
        )
        self._alerts.insert(0, alert)
        logger.warning(f"Alert: {message}")

        self._notify(alert)
        return alert

    def _is_duplicate(self, message: str, now: int) -> bool:
        if not self._alerts:
            return False
        head = self._alerts[0]
        return head.message == message and (now - head.timestamp) < self._dedup_window_ms

    def _notify(self, alert: Alert) -> None:
        """Announce an alert. Best effort, never raises."""
        if self._sink is None or not self._sink.permission_granted:
            return

        try:
            self._sink.notify(NOTIFICATION_TITLE, alert.message, tag=alert.kind.value)
        except Exception as e:
            logger.warning(f"Notification failed for {alert.kind.value}: {e}")
