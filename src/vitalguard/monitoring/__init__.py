"""
Monitoring Layer - Vital-sign alerts, notifications and health.

This module provides:
    - AlertEngine: Threshold rules with deduplication
    - Alert, AlertKind, AlertThresholds: Alert records and policy
    - NotificationSink, TelegramNotificationSink: Alert announcement
    - HealthChecker: Sensor, sync and storage health checks
    - Dashboard, create_app: Flask operator API

Alert Deduplication:
    - A message identical to the newest alert within 60s is dropped
    - Only the newest alert is compared
"""

from .alerting import Alert, AlertEngine, AlertKind, AlertThresholds
from .dashboard import Dashboard, create_app
from .health_checker import (
    AggregateHealth,
    ComponentHealth,
    HealthChecker,
    HealthStatus,
)
from .notifications import NotificationSink, TelegramNotificationSink

__all__ = [
    # Alerting
    "AlertEngine",
    "Alert",
    "AlertKind",
    "AlertThresholds",
    # Notifications
    "NotificationSink",
    "TelegramNotificationSink",
    # Health checking
    "HealthChecker",
    "HealthStatus",
    "ComponentHealth",
    "AggregateHealth",
    # Dashboard
    "Dashboard",
    "create_app",
]
