from __future__ import annotations

import asyncio

from conftest import T0
from trip_tracker.models import TELEMETRY, Fix
from trip_tracker.writer import TelemetryWriter


def _fix(i: int = 0) -> Fix:
    return Fix(lat=12.97 + i * 0.001, lng=77.59, speed_mps=5.0, accuracy_m=4.0, time_ms=T0 + i)


def test_write_appends_tagged_record(store, binding) -> None:
    writer = TelemetryWriter(store)

    async def scenario() -> list[dict]:
        writer.write(_fix(), binding)
        assert writer.in_flight == 1
        await writer.drain()
        return await store.query(TELEMETRY)

    rows = asyncio.run(scenario())
    assert len(rows) == 1
    row = rows[0]
    assert row["session_id"] == "sess_1"
    assert row["session_doc_id"] == "doc_1"
    assert row["rider_id"] == "ravi"
    assert row["location"] == {"lat": 12.97, "lng": 77.59}
    assert row["speed"] == 5.0
    assert row["accuracy"] == 4.0
    assert row["client_time"] == T0
    # resolved by the store, not the sentinel
    assert row["timestamp"] == T0
    assert writer.written == 1 and writer.dropped == 0


def test_failed_write_is_dropped_and_later_writes_continue(store, binding) -> None:
    writer = TelemetryWriter(store)

    async def scenario() -> None:
        store.failing.add(("insert", TELEMETRY))
        writer.write(_fix(1), binding)
        await writer.drain()
        store.failing.clear()
        writer.write(_fix(2), binding)
        await writer.drain()

    asyncio.run(scenario())
    assert writer.dropped == 1
    assert writer.written == 1
    assert len(asyncio.run(store.query(TELEMETRY))) == 1


def test_write_does_not_block_on_the_store(store, binding) -> None:
    writer = TelemetryWriter(store)

    async def scenario() -> int:
        for i in range(5):
            writer.write(_fix(i), binding)
        # nothing has run yet: every append is still a pending task
        pending = writer.in_flight
        await writer.drain()
        return pending

    assert asyncio.run(scenario()) == 5
    assert writer.written == 5
    assert writer.in_flight == 0
