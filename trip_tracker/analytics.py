"""Trip statistics from telemetry points."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from trip_tracker.geo import mps_to_kmh, path_length_km
from trip_tracker.models import TelemetryPoint, TimeWindow, TripSummary, point_from_record
from trip_tracker.timeutils import format_clock_duration

logger = logging.getLogger(__name__)


def _order_key(p: TelemetryPoint) -> tuple[int, int, float, float, float, float, str]:
    # equal server timestamps get a fixed order whatever order they arrived in
    return (
        p.timestamp_ms or 0,
        p.client_time_ms or 0,
        p.lat,
        p.lng,
        p.speed_mps or 0.0,
        p.accuracy_m or 0.0,
        p.session_id or "",
    )


def select_points(points: Iterable[TelemetryPoint], window: TimeWindow | None = None) -> list[TelemetryPoint]:
    """Valid points inside `window` (inclusive), in timestamp order."""

    kept = [
        p
        for p in points
        if p.is_valid and p.timestamp_ms is not None and (window is None or window.contains(p.timestamp_ms))
    ]
    kept.sort(key=_order_key)
    return kept


def summarize(points: Iterable[TelemetryPoint], window: TimeWindow | None = None) -> TripSummary:
    """Distance, speeds and duration for the points that fall in `window`.

    Points without a resolved timestamp or with non-finite coordinates are
    ignored. Missing speeds count as 0 km/h. The result does not depend on the
    order of `points`.
    """

    ordered = select_points(points, window)
    if not ordered:
        return TripSummary(
            distance_km=0.0,
            avg_speed_kmh=0.0,
            max_speed_kmh=0.0,
            duration_label=format_clock_duration(0),
        )

    path = tuple((p.lat, p.lng) for p in ordered)
    speeds = [mps_to_kmh(p.speed_mps) for p in ordered]
    start_ms = ordered[0].timestamp_ms or 0
    end_ms = ordered[-1].timestamp_ms or 0
    duration_ms = end_ms - start_ms

    return TripSummary(
        distance_km=path_length_km(path),
        avg_speed_kmh=sum(speeds) / len(speeds),
        max_speed_kmh=max(speeds),
        duration_label=format_clock_duration(duration_ms),
        ordered_path=path,
        duration_ms=duration_ms,
        point_count=len(ordered),
        start_ms=start_ms,
        end_ms=end_ms,
    )


def summarize_records(
    records: Iterable[Mapping[str, Any]], window: TimeWindow | None = None
) -> TripSummary:
    """`summarize` over raw `tracking_data` rows as returned by the store."""

    points = [point_from_record(r) for r in records]
    summary = summarize(points, window)
    skipped = sum(1 for p in points if not p.is_valid)
    if skipped:
        logger.debug("ignored %d telemetry rows without usable coordinates or timestamp", skipped)
    return summary
