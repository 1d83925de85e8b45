from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from conftest import T0, FakeClock
from trip_tracker.store import SERVER_TIMESTAMP, JsonFileStore, MemoryStore


def test_server_timestamp_resolves_nested_and_never_goes_backwards() -> None:
    clock = FakeClock()
    store = MemoryStore(clock=clock)

    async def scenario() -> None:
        doc_id = await store.insert("s", {"start_time": SERVER_TIMESTAMP, "meta": {"at": SERVER_TIMESTAMP}})
        clock.ms -= 5_000  # wall clock stepped back
        await store.update("s", doc_id, {"end_time": SERVER_TIMESTAMP})
        doc = await store.get("s", doc_id)
        assert doc is not None
        assert doc["start_time"] == T0
        assert doc["meta"] == {"at": T0}
        assert doc["end_time"] >= doc["start_time"]

    asyncio.run(scenario())


def test_upsert_merges_and_replaces() -> None:
    store = MemoryStore(clock=FakeClock())

    async def scenario() -> None:
        await store.upsert("users", "ravi", {"name": "Ravi", "type": "rider"})
        await store.upsert("users", "ravi", {"last_active": 5})
        assert await store.get("users", "ravi") == {"id": "ravi", "name": "Ravi", "type": "rider", "last_active": 5}
        await store.upsert("users", "ravi", {"name": "Ravi K"}, merge=False)
        assert await store.get("users", "ravi") == {"id": "ravi", "name": "Ravi K"}

    asyncio.run(scenario())


def test_update_unknown_document_raises() -> None:
    store = MemoryStore(clock=FakeClock())
    with pytest.raises(KeyError):
        asyncio.run(store.update("s", "nope", {"x": 1}))


def test_query_filters_and_limit() -> None:
    store = MemoryStore(clock=FakeClock())

    async def scenario() -> None:
        for i in range(5):
            await store.insert("t", {"rider_id": "a" if i % 2 == 0 else "b", "i": i})
        rows = await store.query("t", {"rider_id": "a"})
        assert [r["i"] for r in rows] == [0, 2, 4]
        assert all("id" in r for r in rows)
        assert len(await store.query("t", {}, limit=2)) == 2
        assert await store.query("missing") == []

    asyncio.run(scenario())


def test_subscribe_delivers_snapshot_now_and_on_matching_changes() -> None:
    store = MemoryStore(clock=FakeClock())
    seen: list[list[int]] = []

    async def scenario() -> None:
        await store.insert("t", {"rider_id": "a", "i": 0})
        unsubscribe = store.subscribe("t", {"rider_id": "a"}, lambda rows: seen.append([r["i"] for r in rows]))
        await store.insert("t", {"rider_id": "b", "i": 1})
        await store.insert("t", {"rider_id": "a", "i": 2})
        unsubscribe()
        await store.insert("t", {"rider_id": "a", "i": 3})

    asyncio.run(scenario())
    assert seen == [[0], [0, 2]]
    assert store.listener_count == 0


def test_failing_listener_does_not_break_writes() -> None:
    store = MemoryStore(clock=FakeClock())
    calls: list[int] = []

    def bad(rows: list[dict]) -> None:
        calls.append(len(rows))
        raise RuntimeError("boom")

    async def scenario() -> None:
        store.subscribe("t", None, bad)
        await store.insert("t", {"i": 1})
        assert len(await store.query("t")) == 1

    asyncio.run(scenario())
    assert calls == [0, 1]


def test_snapshots_are_copies() -> None:
    store = MemoryStore(clock=FakeClock())

    async def scenario() -> None:
        doc_id = await store.insert("t", {"location": {"lat": 1.0}})
        rows = await store.query("t")
        rows[0]["location"]["lat"] = 99.0
        assert (await store.get("t", doc_id))["location"]["lat"] == 1.0

    asyncio.run(scenario())


def test_json_store_survives_restart_through_the_journal(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    clock = FakeClock()
    store = JsonFileStore(path, clock=clock)

    async def write() -> str:
        return await store.insert("tracking_sessions", {"status": "active", "start_time": SERVER_TIMESTAMP})

    doc_id = asyncio.run(write())
    assert not path.exists()
    assert (tmp_path / "store.journal.jsonl").exists()

    reopened = JsonFileStore(path, clock=FakeClock(T0 - 60_000))
    doc = asyncio.run(reopened.get("tracking_sessions", doc_id))
    assert doc is not None and doc["start_time"] == T0

    # the reopened store's clock is behind, timestamps still move forward
    asyncio.run(reopened.update("tracking_sessions", doc_id, {"end_time": SERVER_TIMESTAMP}))
    assert asyncio.run(reopened.get("tracking_sessions", doc_id))["end_time"] >= T0


def test_json_store_flush_compacts_journal(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    store = JsonFileStore(path, clock=FakeClock())
    asyncio.run(store.upsert("users", "ravi", {"name": "Ravi"}))
    store.flush()

    assert not (tmp_path / "store.journal.jsonl").exists()
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["collections"]["users"]["ravi"] == {"name": "Ravi"}
    assert asyncio.run(JsonFileStore(path).get("users", "ravi")) == {"id": "ravi", "name": "Ravi"}


def test_json_store_ignores_torn_journal_line(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    store = JsonFileStore(path, clock=FakeClock())
    asyncio.run(store.upsert("users", "ravi", {"name": "Ravi"}))
    with (tmp_path / "store.journal.jsonl").open("a", encoding="utf-8") as f:
        f.write('{"c": "users", "id": "x", "doc": {')

    rows = asyncio.run(JsonFileStore(path).query("users"))
    assert [r["id"] for r in rows] == ["ravi"]


def test_json_store_keeps_corrupted_snapshot_aside(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileStore(path)
    assert asyncio.run(store.query("users")) == []
    assert (tmp_path / "store.json.broken").read_text(encoding="utf-8") == "{not json"


def test_json_store_keeps_non_object_snapshot_aside(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("[1, 2]", encoding="utf-8")
    store = JsonFileStore(path)
    assert asyncio.run(store.query("users")) == []
    assert (tmp_path / "store.json.broken").read_text(encoding="utf-8") == "[1, 2]"


def test_json_store_refresh_sees_other_writers(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    reader = JsonFileStore(path, clock=FakeClock())
    writer = JsonFileStore(path, clock=FakeClock())
    seen: list[int] = []
    reader.subscribe("tracking_data", {"rider_id": "ravi"}, lambda rows: seen.append(len(rows)))

    asyncio.run(writer.insert("tracking_data", {"rider_id": "ravi"}))
    asyncio.run(writer.insert("tracking_data", {"rider_id": "ravi"}))

    assert reader.refresh() == {"tracking_data"}
    assert reader.refresh() == set()
    assert seen == [0, 2]
