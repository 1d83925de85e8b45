"""Data models for riders, sessions and telemetry points."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Final, Mapping

from trip_tracker.timeutils import format_duration, tzinfo_from_name

DEFAULT_TZ: Final[str] = "Asia/Kolkata"

USERS: Final[str] = "users"
SESSIONS: Final[str] = "tracking_sessions"
TELEMETRY: Final[str] = "tracking_data"

_WHITESPACE = re.compile(r"\s+")


def rider_id_from_name(display_name: str) -> str:
    """Derive the stable rider id from a display name.

    "  Ravi  Kumar " -> "ravi_kumar"
    """

    return _WHITESPACE.sub("_", display_name.strip().lower())


@dataclass(frozen=True, slots=True)
class Rider:
    """The subject being tracked."""

    id: str
    display_name: str

    @classmethod
    def from_name(cls, display_name: str) -> Rider:
        name = display_name.strip()
        return cls(id=rider_id_from_name(name), display_name=name)


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class Session:
    """One on-duty interval of a rider.

    Attributes:
        id: Store-assigned document id.
        rider_id: Owning rider.
        start_ms: Server-resolved start time (epoch ms), None if not resolved yet.
        end_ms: Server-resolved end time, None while the session is open.
        status: ACTIVE or COMPLETED. A session left ACTIVE with no watcher is
            an orphan and is still reported as ongoing.
    """

    id: str
    rider_id: str
    start_ms: int | None
    end_ms: int | None
    status: SessionStatus
    rider_name: str = ""

    @property
    def is_ongoing(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Session:
        try:
            status = SessionStatus(record.get("status", SessionStatus.ACTIVE.value))
        except ValueError:
            status = SessionStatus.ACTIVE
        return cls(
            id=str(record.get("id", "")),
            rider_id=str(record.get("rider_id", "")),
            start_ms=_as_int(record.get("start_time")),
            end_ms=_as_int(record.get("end_time")),
            status=status,
            rider_name=str(record.get("rider_name", "") or ""),
        )


@dataclass(frozen=True, slots=True)
class Fix:
    """A single position reported by a location provider."""

    lat: float
    lng: float
    speed_mps: float | None
    accuracy_m: float | None
    time_ms: int


@dataclass(frozen=True, slots=True)
class SessionBinding:
    """Identifiers every telemetry sample of a session is tagged with.

    session_id is generated locally ("sess_<epoch ms>") so samples stay grouped
    even when the session document write is slow or failed; session_doc_id is
    the store-assigned id of the session record.
    """

    session_id: str
    session_doc_id: str | None
    rider_id: str
    rider_name: str


@dataclass(frozen=True, slots=True)
class TelemetryPoint:
    """One timestamped location sample as read back from the store.

    Coordinates and timestamp are optional here only so raw rows can be
    represented; analytics uses `is_valid` to drop incomplete ones.
    """

    session_id: str | None
    session_doc_id: str | None
    rider_id: str | None
    lat: float | None
    lng: float | None
    speed_mps: float | None = None
    accuracy_m: float | None = None
    timestamp_ms: int | None = None
    client_time_ms: int | None = None

    @property
    def is_valid(self) -> bool:
        return (
            self.lat is not None
            and self.lng is not None
            and self.timestamp_ms is not None
            and math.isfinite(self.lat)
            and math.isfinite(self.lng)
        )


def fix_to_record(fix: Fix, binding: SessionBinding, timestamp: Any) -> dict[str, Any]:
    """Build the store row for one fix.

    `timestamp` is normally the store's server-timestamp sentinel.
    """

    return {
        "session_id": binding.session_id,
        "session_doc_id": binding.session_doc_id,
        "rider_id": binding.rider_id,
        "rider_name": binding.rider_name,
        "location": {"lat": fix.lat, "lng": fix.lng},
        "speed": fix.speed_mps,
        "accuracy": fix.accuracy_m,
        "client_time": fix.time_ms,
        "timestamp": timestamp,
    }


def point_from_record(record: Mapping[str, Any]) -> TelemetryPoint:
    """Decode a `tracking_data` row. Malformed values become None."""

    location = record.get("location")
    if not isinstance(location, Mapping):
        location = {}
    return TelemetryPoint(
        session_id=_as_str(record.get("session_id")),
        session_doc_id=_as_str(record.get("session_doc_id")),
        rider_id=_as_str(record.get("rider_id")),
        lat=_as_float(location.get("lat")),
        lng=_as_float(location.get("lng")),
        speed_mps=_as_float(record.get("speed")),
        accuracy_m=_as_float(record.get("accuracy")),
        timestamp_ms=_as_int(record.get("timestamp")),
        client_time_ms=_as_int(record.get("client_time")),
    )


class CheckStatus(str, Enum):
    PENDING = "pending"
    CHECKING = "checking"
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class DiagnosticsState:
    """Readiness snapshot; process-local, never persisted."""

    network: CheckStatus = CheckStatus.PENDING
    store: CheckStatus = CheckStatus.PENDING
    location: CheckStatus = CheckStatus.PENDING
    # PositionErrorKind value ("permission_denied", "timeout", ...) when location failed.
    location_error: str | None = None
    store_error: str | None = None

    @property
    def ready(self) -> bool:
        return self.store is CheckStatus.OK and self.location is CheckStatus.OK

    @property
    def permission_denied(self) -> bool:
        return self.location_error == "permission_denied"


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """Inclusive [start_ms, end_ms] bound on point timestamps."""

    start_ms: int
    end_ms: int

    def __post_init__(self) -> None:
        if self.end_ms < self.start_ms:
            raise ValueError(f"window end {self.end_ms} is before start {self.start_ms}")

    def contains(self, timestamp_ms: int) -> bool:
        return self.start_ms <= timestamp_ms <= self.end_ms

    @classmethod
    def for_day(cls, day: date, tz_name: str = DEFAULT_TZ) -> TimeWindow:
        """Whole local day: 00:00:00.000 to 23:59:59.999 in tz_name."""

        tz = tzinfo_from_name(tz_name)
        start = datetime.combine(day, time.min).replace(tzinfo=tz)
        end = datetime.combine(day + timedelta(days=1), time.min).replace(tzinfo=tz)
        start_ms = int(start.timestamp() * 1000)
        return cls(start_ms=start_ms, end_ms=int(end.timestamp() * 1000) - 1)


@dataclass(frozen=True, slots=True)
class TripSummary:
    """Derived trip statistics; never stored.

    `duration_label` always carries the hours term ("0h 20m"). Use
    `compact_duration` for the short form that drops a zero hours term ("20m").
    """

    distance_km: float
    avg_speed_kmh: float
    max_speed_kmh: float
    duration_label: str
    ordered_path: tuple[tuple[float, float], ...] = field(default_factory=tuple)
    duration_ms: int = 0
    point_count: int = 0
    start_ms: int | None = None
    end_ms: int | None = None

    @property
    def compact_duration(self) -> str:
        return format_duration(self.duration_ms)


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)
