"""SkyRelay — core internal data models.

These are plain dataclasses with no framework dependencies.
JSON bodies are converted to/from these at the API boundary; the wire
format uses camelCase keys.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from skyrelay.core.errors import InvalidInput

Clock = Callable[[], datetime]

# Event names delivered to the EventNotifier boundary.
ASSIGNMENT_CHANGED = "assignment_changed"
TRANSMISSION_RECEIVED = "transmission_received"
DETECTION_RELAYED = "detection_relayed"
AGGREGATE_PRODUCED = "aggregate_produced"

DEFAULT_DETECTION_TYPE = "human"
DETECTION_STATUS_DETECTED = "detected"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Render a datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def normalize_timestamp(value: Any) -> str | None:
    """Normalize a caller-supplied timestamp.

    ISO-8601 input is rewritten in the canonical UTC form so that string
    ordering matches chronological ordering. Anything else is kept as an
    opaque string. Empty input returns None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return format_timestamp(value)
    text = str(value)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return text
    return format_timestamp(parsed)


def require_identifier(value: Any, name: str) -> str:
    """Return ``value`` as a non-empty string or raise InvalidInput."""
    if value is None:
        raise InvalidInput(f"{name} is required")
    text = str(value).strip()
    if not text:
        raise InvalidInput(f"{name} is required")
    return text


def _optional_float(value: Any) -> float | None:
    # NaN and infinities count as non-numeric.
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _coordinate(value: Any) -> float:
    # Absent or non-numeric coordinates fall back to 0.
    number = _optional_float(value)
    return 0.0 if number is None else number


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def first_present(data: dict, *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


@dataclass(frozen=True)
class Location:
    lat: float = 0.0
    lng: float = 0.0
    altitude: float = 0.0

    @classmethod
    def from_dict(cls, data: Any) -> Location:
        if not isinstance(data, dict):
            return cls()
        return cls(
            lat=_coordinate(data.get("lat")),
            lng=_coordinate(first_present(data, "lng", "lon")),
            altitude=_coordinate(data.get("altitude")),
        )

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng, "altitude": self.altitude}


@dataclass(frozen=True)
class LinkMetrics:
    """Adaptive-communication mode, signal strength and data rate."""
    mode: str | None = None
    signal_strength: float | None = None
    data_rate: float | None = None

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "signalStrength": self.signal_strength,
            "dataRate": self.data_rate,
        }


@dataclass(frozen=True)
class DetectionInput:
    id: str | None = None
    coordinates: Any = None
    confidence: float | None = None
    type: str | None = None
    timestamp: str | None = None
    additional_info: Any = None

    @classmethod
    def from_dict(cls, data: Any) -> DetectionInput:
        if not isinstance(data, dict):
            return cls()
        return cls(
            id=_optional_str(data.get("id")) or None,
            coordinates=data.get("coordinates"),
            confidence=_optional_float(data.get("confidence")),
            type=_optional_str(first_present(data, "type", "detectionType")) or None,
            timestamp=normalize_timestamp(data.get("timestamp")),
            additional_info=data.get("additionalInfo"),
        )


@dataclass(frozen=True)
class TransmissionReport:
    """One inbound report from a slave unit, before it is stored."""
    slave_id: str
    master_id: str
    location: Location = field(default_factory=Location)
    battery_level: float | None = None
    isac_mode: str | None = None
    signal_strength: float | None = None
    data_rate: float | None = None
    detections: tuple[DetectionInput, ...] = ()
    timestamp: str | None = None

    @classmethod
    def from_dict(cls, body: dict) -> TransmissionReport:
        """Parse a report body. Missing ids become empty strings; they are
        rejected later by TransmissionLog.append."""
        raw_detections = body.get("detections") or []
        if not isinstance(raw_detections, list):
            raw_detections = []
        return cls(
            slave_id=str(first_present(body, "slaveId", "slaveUAVId") or ""),
            master_id=str(first_present(body, "masterId", "masterUAVId") or ""),
            location=Location.from_dict(body.get("location")),
            battery_level=_optional_float(body.get("batteryLevel")),
            isac_mode=_optional_str(body.get("isacMode")),
            signal_strength=_optional_float(body.get("signalStrength")),
            data_rate=_optional_float(body.get("dataRate")),
            detections=tuple(DetectionInput.from_dict(d) for d in raw_detections),
            timestamp=normalize_timestamp(body.get("timestamp")),
        )

    @property
    def detections_count(self) -> int:
        return len(self.detections)


@dataclass(frozen=True)
class StoredTransmission:
    record_id: int
    slave_id: str
    master_id: str
    location: Location
    battery_level: float | None
    isac_mode: str | None
    signal_strength: float | None
    data_rate: float | None
    detections_count: int
    timestamp: str
    received_at: str

    @property
    def link_metrics(self) -> LinkMetrics:
        return LinkMetrics(
            mode=self.isac_mode,
            signal_strength=self.signal_strength,
            data_rate=self.data_rate,
        )

    def history_entry(self) -> dict:
        """Per-transmission entry kept in a slave's aggregate history."""
        return {
            "location": self.location.to_dict(),
            "batteryLevel": self.battery_level,
            "isacMode": self.isac_mode,
            "signalStrength": self.signal_strength,
            "dataRate": self.data_rate,
            "detectionsCount": self.detections_count,
            "timestamp": self.timestamp,
        }

    def to_dict(self) -> dict:
        entry = self.history_entry()
        entry.update({
            "recordId": self.record_id,
            "slaveId": self.slave_id,
            "masterId": self.master_id,
            "receivedAt": self.received_at,
        })
        return entry


@dataclass(frozen=True)
class TransmissionReceipt:
    slave_id: str
    master_id: str
    timestamp: str
    detections_count: int

    def to_dict(self) -> dict:
        return {
            "slaveId": self.slave_id,
            "masterId": self.master_id,
            "timestamp": self.timestamp,
            "detectionsCount": self.detections_count,
        }


@dataclass(frozen=True)
class MasterAssignment:
    master_id: str
    assigned_at: str
    updated_at: str

    def to_dict(self) -> dict:
        return {
            "masterId": self.master_id,
            "assignedAt": self.assigned_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class DetectionRecord:
    id: str
    coordinates: Any
    confidence: float | None
    detection_type: str
    reporting_unit_id: str
    timestamp: str
    status: str = DETECTION_STATUS_DETECTED
    additional_info: Any = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "coordinates": self.coordinates,
            "confidence": self.confidence,
            "detectionType": self.detection_type,
            "reportingUnitId": self.reporting_unit_id,
            "timestamp": self.timestamp,
            "status": self.status,
            "additionalInfo": self.additional_info,
        }


@dataclass(frozen=True)
class MasterReport:
    """The master's own state, uploaded alongside a request for the
    consolidated picture."""
    master_id: str
    location: Location = field(default_factory=Location)
    battery_level: float | None = None
    isac_mode: str | None = None
    signal_strength: float | None = None
    data_rate: float | None = None
    detections: tuple[Any, ...] = ()

    @classmethod
    def from_dict(cls, body: dict) -> MasterReport:
        raw_detections = body.get("detections") or []
        if not isinstance(raw_detections, list):
            raw_detections = []
        return cls(
            master_id=str(first_present(body, "masterId", "masterUAVId") or ""),
            location=Location.from_dict(body.get("location")),
            battery_level=_optional_float(body.get("batteryLevel")),
            isac_mode=_optional_str(body.get("isacMode")),
            signal_strength=_optional_float(body.get("signalStrength")),
            data_rate=_optional_float(body.get("dataRate")),
            detections=tuple(raw_detections),
        )

    def to_dict(self) -> dict:
        return {
            "location": self.location.to_dict(),
            "batteryLevel": self.battery_level,
            "isacMode": self.isac_mode,
            "signalStrength": self.signal_strength,
            "dataRate": self.data_rate,
            "detections": list(self.detections),
        }


@dataclass(frozen=True)
class Event:
    name: str
    payload: dict
    emitted_at: str

    def to_dict(self) -> dict:
        return {"event": self.name, "payload": self.payload, "emittedAt": self.emitted_at}
