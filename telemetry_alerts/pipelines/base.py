"""
Pipeline Data Model

Value types shared by the decode-and-alert pipelines.
No infrastructure dependencies - plain dataclasses and enums.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_time(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class SensorKind(Enum):
    AIR_QUALITY = "air_quality"
    WEATHER = "weather"
    GENERIC = "generic"


class Severity(Enum):
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return 1 if self is Severity.CRITICAL else 0


class AlertStatus(Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class Direction(Enum):
    """Which side of a level counts as a violation."""
    ABOVE = "above"
    BELOW = "below"


class DeltaKind(Enum):
    CREATED = "created"
    UPDATED = "updated"
    RESOLVED = "resolved"
    ACKNOWLEDGED = "acknowledged"
    DISMISSED = "dismissed"


@dataclass(frozen=True)
class Reading:
    """
    One decoded telemetry sample.

    `fields` is sparse: only parameters that decoded to an in-range value
    are present.
    """
    device_id: str
    sensor_kind: SensorKind
    fields: dict
    timestamp: datetime
    version: Optional[float] = None
    session_id: Optional[int] = None
    order: Optional[int] = None
    payload_length: Optional[int] = None
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "Reading":
        """Build a reading delivered already decoded (poll source)."""
        fields = {
            name: float(value)
            for name, value in (data.get("fields") or {}).items()
            if isinstance(value, (int, float)) and not isinstance(value, bool)
        }
        return cls(
            device_id=data["deviceId"],
            sensor_kind=SensorKind(data.get("sensorKind", SensorKind.GENERIC.value)),
            fields=fields,
            timestamp=parse_time(data.get("timestamp")) or utcnow(),
        )

    def to_dict(self) -> dict:
        return {
            "deviceId": self.device_id,
            "sensorKind": self.sensor_kind.value,
            "fields": dict(self.fields),
            "timestamp": _isoformat(self.timestamp),
            "version": self.version,
            "sessionId": self.session_id,
            "order": self.order,
            "payloadLength": self.payload_length,
        }


@dataclass(frozen=True)
class ThresholdRule:
    """
    Operator-configured warning/critical bounds for one parameter.

    Example:
        ThresholdRule(parameter="temperature", warning_level=35, critical_level=40)
    """
    parameter: str
    warning_level: Optional[float] = None
    critical_level: Optional[float] = None
    description: str = ""
    is_active: bool = True
    direction: Optional[Direction] = None

    @property
    def is_usable(self) -> bool:
        return self.warning_level is not None or self.critical_level is not None

    @property
    def is_ambiguous(self) -> bool:
        """True when the violation side can only be guessed."""
        if self.direction is not None:
            return False
        if self.warning_level is None or self.critical_level is None:
            return True
        return self.warning_level == self.critical_level

    @property
    def violation_direction(self) -> Direction:
        if self.direction is not None:
            return self.direction
        if self.warning_level is not None and self.critical_level is not None:
            if self.critical_level < self.warning_level:
                return Direction.BELOW
        return Direction.ABOVE

    @classmethod
    def from_dict(cls, data: dict) -> "ThresholdRule":
        direction = data.get("direction")
        return cls(
            parameter=data["parameter"],
            warning_level=data.get("warningThreshold", data.get("warningLevel")),
            critical_level=data.get("criticalThreshold", data.get("criticalLevel")),
            description=data.get("description") or "",
            is_active=data.get("isActive", True),
            direction=Direction(direction) if direction else None,
        )


@dataclass(frozen=True)
class AlertCandidate:
    """A violation found in one evaluation cycle, not yet merged."""
    device_id: str
    parameter: str
    severity: Severity
    current_value: float
    threshold_value: float
    message: str = ""
    description: str = ""
    detected_at: Optional[datetime] = None


@dataclass(frozen=True)
class Alert:
    alert_id: str
    device_id: str
    parameter: str
    severity: Severity
    current_value: float
    threshold_value: float
    first_detected: datetime
    last_updated: datetime
    status: AlertStatus = AlertStatus.ACTIVE
    occurrence_count: int = 1
    message: str = ""
    description: str = ""
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "alertId": self.alert_id,
            "deviceId": self.device_id,
            "parameter": self.parameter,
            "severity": self.severity.value,
            "status": self.status.value,
            "currentValue": self.current_value,
            "thresholdValue": self.threshold_value,
            "occurrenceCount": self.occurrence_count,
            "message": self.message,
            "description": self.description,
            "firstDetected": _isoformat(self.first_detected),
            "lastUpdated": _isoformat(self.last_updated),
            "acknowledgedBy": self.acknowledged_by,
            "acknowledgedAt": _isoformat(self.acknowledged_at),
            "resolvedBy": self.resolved_by,
            "resolvedAt": _isoformat(self.resolved_at),
        }


@dataclass(frozen=True)
class AlertDelta:
    """A change to store state, handed to the publisher."""
    kind: DeltaKind
    alert: Alert

    @property
    def device_id(self) -> str:
        return self.alert.device_id

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "alert": self.alert.to_dict()}


@dataclass
class PipelineResult:
    """Outcome of running one batch through the pipelines."""
    readings: list = field(default_factory=list)
    deltas: list = field(default_factory=list)
    errors: list = field(default_factory=list)

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def extend(self, other: "PipelineResult"):
        self.readings.extend(other.readings)
        self.deltas.extend(other.deltas)
        self.errors.extend(other.errors)


@dataclass(frozen=True)
class ItemError:
    """A per-item failure collected in a batch."""
    index: int
    error: Exception
    device_id: Optional[str] = None

    @property
    def reason(self) -> str:
        return getattr(self.error, "reason", type(self.error).__name__)
