"""
Data models for the ingestion layer.

These models represent:
- Readings polled from the sensor's /data endpoint
- The sensor connection state
- The patient profile attached to every remote push

Note on partial bodies:
    The sensor omits fields it could not measure on a given tick. A missing
    field is NOT an error: Reading.from_payload() keeps the previous value.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, FiniteFloat, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Connectivity state of the sensor."""
    DISCONNECTED = "disconnected"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"


def now_ms() -> int:
    """Wall clock time in milliseconds."""
    return int(time.time() * 1000)


# Sensor wire name -> Reading attribute
WIRE_FIELDS = {
    "heartRate": "heart_rate",
    "spO2": "spo2",
    "temperature": "temperature",
    "systolicBP": "systolic_bp",
    "diastolicBP": "diastolic_bp",
    "batteryLevel": "battery_level",
    "isMoving": "is_moving",
}

_NUMBER = TypeAdapter(FiniteFloat)
_FLAG = TypeAdapter(bool)

# Attributes stored as whole numbers; the sensor may still send 72.0 or "72"
_INTEGER_FIELDS = frozenset({"heart_rate", "systolic_bp", "diastolic_bp"})


def _coerce(attr: str, raw: Any) -> Any:
    """Convert one wire value to the attribute's type. Raises ValidationError."""
    if attr == "is_moving":
        return _FLAG.validate_python(raw)
    value = _NUMBER.validate_python(raw)
    return int(round(value)) if attr in _INTEGER_FIELDS else value


@dataclass(frozen=True)
class Reading:
    """
    One timestamped snapshot of the sensor's measurements.

    Attributes:
        timestamp: Wall clock time of the poll in milliseconds
        heart_rate: Beats per minute
        spo2: Blood oxygen saturation in percent
        temperature: Body temperature in Celsius
        systolic_bp: Systolic blood pressure in mmHg
        diastolic_bp: Diastolic blood pressure in mmHg
        battery_level: Sensor battery in percent
        is_moving: Accelerometer motion flag
    """
    timestamp: int
    heart_rate: int = 0
    spo2: float = 0
    temperature: float = 0.0
    systolic_bp: int = 0
    diastolic_bp: int = 0
    battery_level: float = 0
    is_moving: bool = False

    @classmethod
    def empty(cls, timestamp: int) -> "Reading":
        """All-zero reading used before the sensor reported anything."""
        return cls(timestamp=timestamp)

    @classmethod
    def from_payload(
        cls,
        data: Mapping[str, Any],
        previous: "Reading",
        timestamp: int,
    ) -> "Reading":
        """
        Merge a sensor response body onto the previous reading.

        Args:
            data: Decoded JSON body from GET /data
            previous: Last known reading, source of fallback values
            timestamp: Timestamp for the new reading (ms)

        Returns:
            New Reading; absent, null or unparseable fields keep the
            previous value
        """
        values = {}
        for wire_name, attr in WIRE_FIELDS.items():
            raw = data.get(wire_name)
            values[attr] = getattr(previous, attr)
            if raw is None:
                continue
            try:
                values[attr] = _coerce(attr, raw)
            except ValidationError:
                logger.debug(f"Ignoring unparseable {wire_name}: {raw!r}")
        return cls(timestamp=timestamp, **values)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Reading":
        """Rebuild a reading from its wire form (persisted history)."""
        return cls.from_payload(
            data,
            previous=cls.empty(0),
            timestamp=int(data.get("timestamp", 0)),
        )

    def to_dict(self) -> dict:
        """Wire form, using the sensor's camelCase names."""
        flat = asdict(self)
        result = {"timestamp": self.timestamp}
        for wire_name, attr in WIRE_FIELDS.items():
            result[wire_name] = flat[attr]
        return result


def _default_patient_id() -> str:
    return f"PAT-{random.randint(0, 999)}"


class PatientProfile(BaseModel):
    """Patient identity and physical data sent with every remote push."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str = Field(default_factory=_default_patient_id)
    name: str = ""
    age: int = 0
    condition: str = ""
    blood_type: str = "A+"
    weight: float = 0
    height: float = 0

    @property
    def is_complete(self) -> bool:
        """Onboarding needs at least a name and an age."""
        return bool(self.name) and bool(self.age)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "PatientProfile":
        return cls.model_validate(dict(data or {}))
