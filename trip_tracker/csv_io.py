"""CSV export/import of telemetry points."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from trip_tracker.analytics import select_points
from trip_tracker.models import TelemetryPoint
from trip_tracker.timeutils import dt_from_epoch_ms

logger = logging.getLogger(__name__)

FIELDNAMES: tuple[str, ...] = (
    "time_local",
    "timestamp_ms",
    "client_time_ms",
    "rider_id",
    "session_id",
    "session_doc_id",
    "lat",
    "lng",
    "speed_mps",
    "accuracy_m",
)


@dataclass(frozen=True, slots=True)
class CsvSummary:
    """Quick summary of CSV parsing."""

    rows_total: int
    rows_parsed: int
    rows_skipped: int
    fieldnames: Sequence[str]


def _opt(value: object) -> str:
    return "" if value is None else str(value)


def export_points_csv(points: Iterable[TelemetryPoint], out_path: str | Path, tz_name: str) -> int:
    """Write valid points in timestamp order to a human-readable CSV.

    Returns:
        Number of rows written.
    """

    rows = select_points(points)
    p = Path(out_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=list(FIELDNAMES))
        w.writeheader()
        for pt in rows:
            w.writerow(
                {
                    "time_local": dt_from_epoch_ms(pt.timestamp_ms or 0, tz_name).isoformat(sep=" "),
                    "timestamp_ms": pt.timestamp_ms,
                    "client_time_ms": _opt(pt.client_time_ms),
                    "rider_id": _opt(pt.rider_id),
                    "session_id": _opt(pt.session_id),
                    "session_doc_id": _opt(pt.session_doc_id),
                    "lat": pt.lat,
                    "lng": pt.lng,
                    "speed_mps": _opt(pt.speed_mps),
                    "accuracy_m": _opt(pt.accuracy_m),
                }
            )
    logger.info("exported %d points to %s", len(rows), p)
    return len(rows)


def _parse_opt_float(value: str | None) -> float | None:
    s = (value or "").strip()
    return float(s) if s else None


def _parse_opt_int(value: str | None) -> int | None:
    s = (value or "").strip()
    return int(s) if s else None


def load_points_csv(csv_path: str | Path) -> tuple[list[TelemetryPoint], CsvSummary]:
    """Load points written by `export_points_csv`.

    Rows with a missing or unparsable timestamp or coordinate are skipped.

    Returns:
        (points, summary)
    """

    p = Path(csv_path)
    rows_total = 0
    parsed: list[TelemetryPoint] = []
    fieldnames: Sequence[str] = ()

    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fieldnames = reader.fieldnames or ()
        for row in reader:
            rows_total += 1
            try:
                parsed.append(
                    TelemetryPoint(
                        session_id=row.get("session_id") or None,
                        session_doc_id=row.get("session_doc_id") or None,
                        rider_id=row.get("rider_id") or None,
                        lat=float(row["lat"]),
                        lng=float(row["lng"]),
                        speed_mps=_parse_opt_float(row.get("speed_mps")),
                        accuracy_m=_parse_opt_float(row.get("accuracy_m")),
                        timestamp_ms=int(row["timestamp_ms"]),
                        client_time_ms=_parse_opt_int(row.get("client_time_ms")),
                    )
                )
            except (KeyError, ValueError, TypeError):
                continue

    summary = CsvSummary(
        rows_total=rows_total,
        rows_parsed=len(parsed),
        rows_skipped=rows_total - len(parsed),
        fieldnames=fieldnames,
    )
    if summary.rows_skipped > 0:
        logger.warning("skipped %s unparsable rows in %s", summary.rows_skipped, p)
    return parsed, summary
