"""
Ingestion Layer - Sensor HTTP access and connection state.

This module provides:
    - SensorClient: Async HTTP client for the sensor's /data endpoint
    - ConnectionMonitor: DISCONNECTED -> AUTHENTICATING -> CONNECTED state machine
    - Reading: One timestamped measurement snapshot
    - PatientProfile: Patient identity sent with every remote push
    - ConnectionState: Sensor connectivity enum

Polling:
    - Only CONNECTED polls, once per poll interval
    - 4 consecutive failed polls drop the connection
"""

from .client import SensorClient, SensorUnreachableError
from .connection import ConnectionMonitor, InvalidCredentialError
from .models import ConnectionState, PatientProfile, Reading, now_ms

__all__ = [
    # Client
    "SensorClient",
    "SensorUnreachableError",
    # Connection
    "ConnectionMonitor",
    "InvalidCredentialError",
    # Models
    "ConnectionState",
    "PatientProfile",
    "Reading",
    "now_ms",
]
