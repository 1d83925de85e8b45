from __future__ import annotations

import pytest

from trip_tracker.timeutils import (
    delta_stats,
    dt_from_epoch_ms,
    epoch_ms_from_dt,
    format_clock_duration,
    format_duration,
    parse_dt,
    tzinfo_from_name,
)

MIN = 60_000


@pytest.mark.parametrize(
    ("ms", "label"),
    [(0, "< 1m"), (59_999, "< 1m"), (MIN, "1m"), (20 * MIN, "20m"), (59 * MIN, "59m"), (125 * MIN, "2h 5m")],
)
def test_format_duration(ms: int, label: str) -> None:
    assert format_duration(ms) == label


def test_format_clock_duration_always_shows_hours() -> None:
    assert format_clock_duration(20 * MIN) == "0h 20m"
    assert format_clock_duration(60 * MIN) == "1h 0m"
    assert format_clock_duration(30_000) == "< 1m"


def test_negative_duration_counts_as_zero() -> None:
    assert format_duration(-5 * MIN) == "< 1m"


def test_invalid_timezone() -> None:
    with pytest.raises(ValueError, match="Invalid timezone"):
        tzinfo_from_name("Mars/Olympus_Mons")


def test_parse_dt_assumes_local_timezone() -> None:
    dt = parse_dt("2025-01-01 09:30:00", "Asia/Kolkata")
    assert dt.utcoffset().total_seconds() == 5.5 * 3600
    assert dt_from_epoch_ms(epoch_ms_from_dt(dt), "Asia/Kolkata") == dt


def test_parse_dt_rejects_garbage() -> None:
    with pytest.raises(ValueError, match="Cannot parse time"):
        parse_dt("yesterday", "Asia/Kolkata")


def test_delta_stats() -> None:
    assert delta_stats([1000]) is None
    stats = delta_stats([0, 1000, 3000, 33_000])
    assert stats is not None
    assert stats.count == 3
    assert stats.min_s == 1.0
    assert stats.median_s == 2.0
    assert stats.max_s == 30.0
