"""Inspect a rider's telemetry: coverage, sampling cadence and gaps."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from trip_tracker.models import TelemetryPoint
from trip_tracker.timeutils import DeltaStats, delta_stats


@dataclass(frozen=True, slots=True)
class Gap:
    """Silence between two consecutive samples."""

    start_ms: int
    end_ms: int

    @property
    def seconds(self) -> float:
        return (self.end_ms - self.start_ms) / 1000.0


@dataclass(frozen=True, slots=True)
class InspectResult:
    """High-level telemetry inspection result."""

    points_total: int
    points_valid: int
    points_invalid: int
    sessions: int
    min_time_ms: int | None
    max_time_ms: int | None
    delta: DeltaStats | None
    min_lat: float | None
    max_lat: float | None
    min_lng: float | None
    max_lng: float | None
    duplicate_timestamps: int
    times_ms: tuple[int, ...] = ()

    def gaps_over(self, threshold_seconds: float) -> list[Gap]:
        """Intervals longer than `threshold_seconds`, e.g. a missed heartbeat."""

        limit_ms = threshold_seconds * 1000.0
        t = self.times_ms
        return [Gap(t[i - 1], t[i]) for i in range(1, len(t)) if t[i] - t[i - 1] > limit_ms]


def inspect_points(points: Sequence[TelemetryPoint]) -> InspectResult:
    """Inspect already-loaded points."""

    valid = [p for p in points if p.is_valid]
    if not valid:
        return InspectResult(
            points_total=len(points),
            points_valid=0,
            points_invalid=len(points),
            sessions=0,
            min_time_ms=None,
            max_time_ms=None,
            delta=None,
            min_lat=None,
            max_lat=None,
            min_lng=None,
            max_lng=None,
            duplicate_timestamps=0,
        )

    times = sorted(p.timestamp_ms for p in valid if p.timestamp_ms is not None)
    dupe = sum(1 for i in range(1, len(times)) if times[i] == times[i - 1])
    lats = [p.lat for p in valid if p.lat is not None]
    lngs = [p.lng for p in valid if p.lng is not None]
    return InspectResult(
        points_total=len(points),
        points_valid=len(valid),
        points_invalid=len(points) - len(valid),
        sessions=len({p.session_id for p in valid if p.session_id}),
        min_time_ms=times[0],
        max_time_ms=times[-1],
        delta=delta_stats(times),
        min_lat=min(lats),
        max_lat=max(lats),
        min_lng=min(lngs),
        max_lng=max(lngs),
        duplicate_timestamps=dupe,
        times_ms=tuple(times),
    )
