from __future__ import annotations

from typing import Any, Mapping

import pytest

from trip_tracker.config import TrackerConfig
from trip_tracker.models import SessionBinding
from trip_tracker.store import MemoryStore

T0 = 1_735_700_000_000  # 2025-01-01 08:23:20 Asia/Kolkata


class FakeClock:
    def __init__(self, ms: int = T0) -> None:
        self.ms = ms

    def __call__(self) -> int:
        return self.ms

    def advance(self, seconds: float) -> None:
        self.ms += int(seconds * 1000)


class FlakyStore(MemoryStore):
    """MemoryStore whose operations can be made to fail per (operation, collection).

    `failing.add(("insert", "tracking_sessions"))` or `("query", "*")`.
    """

    def __init__(self, clock: FakeClock) -> None:
        super().__init__(clock=clock)
        self.failing: set[tuple[str, str]] = set()
        self.calls: list[tuple[str, str]] = []

    def _maybe_fail(self, op: str, collection: str) -> None:
        self.calls.append((op, collection))
        if (op, collection) in self.failing or (op, "*") in self.failing:
            raise ConnectionError(f"{op} on {collection} failed")

    async def upsert(self, collection: str, key: str, fields: Mapping[str, Any], merge: bool = True) -> None:
        self._maybe_fail("upsert", collection)
        await super().upsert(collection, key, fields, merge)

    async def insert(self, collection: str, fields: Mapping[str, Any]) -> str:
        self._maybe_fail("insert", collection)
        return await super().insert(collection, fields)

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        self._maybe_fail("update", collection)
        await super().update(collection, doc_id, fields)

    async def query(
        self, collection: str, filters: Mapping[str, Any] | None = None, limit: int | None = None
    ) -> list[dict[str, Any]]:
        self._maybe_fail("query", collection)
        return await super().query(collection, filters, limit)


def fast_config(**overrides: Any) -> TrackerConfig:
    values: dict[str, Any] = {
        "heartbeat_interval_seconds": 0.05,
        "fix_timeout_seconds": 0.2,
        "probe_timeout_seconds": 0.2,
        "arm_settle_seconds": 0.1,
    }
    values.update(overrides)
    return TrackerConfig(**values)


def telemetry_record(
    lat: float | None,
    lng: float | None,
    timestamp: Any,
    speed: Any = None,
    rider_id: str = "ravi",
    session_id: str = "sess_1",
    **extra: Any,
) -> dict[str, Any]:
    record = {
        "session_id": session_id,
        "session_doc_id": "doc_1",
        "rider_id": rider_id,
        "rider_name": "Ravi",
        "location": {"lat": lat, "lng": lng},
        "speed": speed,
        "accuracy": 5.0,
        "client_time": timestamp,
        "timestamp": timestamp,
    }
    record.update(extra)
    return record


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> FlakyStore:
    return FlakyStore(clock)


@pytest.fixture
def binding() -> SessionBinding:
    return SessionBinding(session_id="sess_1", session_doc_id="doc_1", rider_id="ravi", rider_name="Ravi")
