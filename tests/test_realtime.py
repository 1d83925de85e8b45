from __future__ import annotations

import asyncio

from conftest import T0, telemetry_record
from trip_tracker.models import TELEMETRY, TimeWindow, TripSummary
from trip_tracker.realtime import RealtimeTripView

MIN = 60_000


def _seed(store, rider_id: str, n: int, start: int = T0) -> None:
    async def go() -> None:
        for i in range(n):
            await store.insert(TELEMETRY, telemetry_record(12.97 + i * 0.01, 77.59, start + i * MIN, 5.0, rider_id))

    asyncio.run(go())


def test_snapshot_is_summarized_now_and_on_every_change(store) -> None:
    _seed(store, "ravi", 2)
    shown: list[TripSummary] = []
    view = RealtimeTripView(store, shown.append)

    view.watch("ravi")
    assert [s.point_count for s in shown] == [2]

    _seed(store, "ravi", 1, start=T0 + 10 * MIN)
    _seed(store, "anita", 1)
    assert [s.point_count for s in shown] == [2, 3]
    assert view.latest is shown[-1]
    assert shown[-1].duration_label == "0h 10m"
    view.close()


def test_switching_riders_keeps_one_subscription(store) -> None:
    _seed(store, "ravi", 2)
    _seed(store, "anita", 3)
    shown: list[int] = []
    view = RealtimeTripView(store, lambda s: shown.append(s.point_count))

    view.watch("ravi")
    view.watch("anita")
    assert store.listener_count == 1
    assert view.key == ("anita", None)

    _seed(store, "ravi", 1, start=T0 + 30 * MIN)
    assert shown == [2, 3]
    view.close()
    assert store.listener_count == 0
    assert not view.watching


def test_same_key_does_not_resubscribe(store) -> None:
    shown: list[int] = []
    view = RealtimeTripView(store, lambda s: shown.append(s.point_count))
    window = TimeWindow(start_ms=T0, end_ms=T0 + 60 * MIN)

    view.watch("ravi", window)
    view.watch("ravi", window)
    assert shown == [0]
    assert store.listener_count == 1
    view.close()


def test_window_filters_points(store) -> None:
    _seed(store, "ravi", 5)
    shown: list[TripSummary] = []
    view = RealtimeTripView(store, shown.append)

    view.watch("ravi", TimeWindow(start_ms=T0 + MIN, end_ms=T0 + 3 * MIN))
    assert shown[-1].point_count == 3
    view.close()


def test_snapshot_for_an_old_key_is_ignored() -> None:
    class ManualFeed:
        """Store stand-in that hands out the callbacks instead of calling them."""

        def __init__(self) -> None:
            self.callbacks = []

        def subscribe(self, collection, filters, on_change):
            self.callbacks.append(on_change)
            return lambda: None

    feed = ManualFeed()
    shown: list[int] = []
    view = RealtimeTripView(feed, lambda s: shown.append(s.point_count))
    view.watch("ravi")
    view.watch("anita")

    old, new = feed.callbacks
    old([telemetry_record(12.97, 77.59, T0)])
    assert shown == []
    new([telemetry_record(12.97, 77.59, T0), telemetry_record(12.98, 77.59, T0 + MIN)])
    assert shown == [2]

    view.close()
    new([])
    assert shown == [2]


def test_display_errors_do_not_break_the_store(store) -> None:
    def broken(summary: TripSummary) -> None:
        raise RuntimeError("render failed")

    view = RealtimeTripView(store, broken)
    view.watch("ravi")
    _seed(store, "ravi", 1)
    assert len(asyncio.run(store.query(TELEMETRY))) == 1
    assert view.latest is not None and view.latest.point_count == 1
    view.close()
