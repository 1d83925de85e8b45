"""Session history and the rider directory."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from trip_tracker.models import SESSIONS, USERS, Session, SessionStatus
from trip_tracker.store import Store, Unsubscribe
from trip_tracker.timeutils import format_clock_duration, now_ms as _now_ms

logger = logging.getLogger(__name__)

ONGOING = "Ongoing"
INCOMPLETE = "Incomplete"


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    session: Session
    duration_label: str
    # elapsed so far for ongoing sessions, None when it cannot be known
    duration_ms: int | None

    @property
    def ongoing(self) -> bool:
        return self.session.is_ongoing


def history_entry(session: Session, now_ms: int) -> HistoryEntry:
    if session.status is SessionStatus.ACTIVE:
        elapsed = None if session.start_ms is None else max(0, now_ms - session.start_ms)
        return HistoryEntry(session, ONGOING, elapsed)
    if session.start_ms is None or session.end_ms is None:
        return HistoryEntry(session, INCOMPLETE, None)
    duration = max(0, session.end_ms - session.start_ms)
    return HistoryEntry(session, format_clock_duration(duration), duration)


async def load_history(
    store: Store, rider_id: str, limit: int = 20, now_ms: int | None = None
) -> list[HistoryEntry]:
    """A rider's sessions, newest first, with a duration label each.

    Sessions still marked active (including ones whose device went away
    without closing them) are listed as "Ongoing".
    """

    records = await store.query(SESSIONS, {"rider_id": rider_id})
    sessions = [Session.from_record(r) for r in records]
    sessions.sort(key=lambda s: (s.start_ms or 0, s.id), reverse=True)
    now = _now_ms() if now_ms is None else now_ms
    return [history_entry(s, now) for s in sessions[: max(0, limit)]]


@dataclass(frozen=True, slots=True)
class RiderRow:
    id: str
    name: str
    last_active_ms: int | None


def _rider_rows(records: list[dict[str, Any]]) -> list[RiderRow]:
    rows = []
    for r in records:
        if r.get("type", "rider") != "rider":
            continue
        last = r.get("last_active")
        rows.append(
            RiderRow(
                id=str(r.get("id", "")),
                name=str(r.get("name") or r.get("id", "")),
                last_active_ms=last if isinstance(last, int) and not isinstance(last, bool) else None,
            )
        )
    rows.sort(key=lambda row: (row.name.lower(), row.id))
    return rows


async def list_riders(store: Store) -> list[RiderRow]:
    """Every registered rider, sorted by name."""

    return _rider_rows(await store.query(USERS))


class RiderDirectory:
    """Live rider list backed by a `users` subscription."""

    def __init__(self, store: Store, on_change: Callable[[list[RiderRow]], None] | None = None) -> None:
        self._on_change = on_change
        self.riders: list[RiderRow] = []
        self._unsubscribe: Unsubscribe | None = store.subscribe(USERS, None, self._update)

    def _update(self, records: list[dict[str, Any]]) -> None:
        self.riders = _rider_rows(records)
        logger.debug("rider directory now has %d riders", len(self.riders))
        if self._on_change is not None:
            self._on_change(self.riders)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
