"""Live trip summary for one rider and time window."""

from __future__ import annotations

import logging
from typing import Any, Callable

from trip_tracker.analytics import summarize_records
from trip_tracker.models import TELEMETRY, TimeWindow, TripSummary
from trip_tracker.store import Store, Unsubscribe

logger = logging.getLogger(__name__)


class RealtimeTripView:
    """Keeps at most one telemetry subscription and re-summarizes every snapshot.

    `watch()` with a new (rider, window) key drops the previous subscription
    before opening the next one. Snapshots still in flight for an old key are
    recognised by their key token and ignored.
    """

    def __init__(self, store: Store, display: Callable[[TripSummary], None]) -> None:
        self._store = store
        self._display = display
        self._key: tuple[str, TimeWindow | None] | None = None
        self._token = 0
        self._unsubscribe: Unsubscribe | None = None
        self.latest: TripSummary | None = None

    @property
    def key(self) -> tuple[str, TimeWindow | None] | None:
        return self._key

    @property
    def watching(self) -> bool:
        return self._unsubscribe is not None

    def watch(self, rider_id: str, window: TimeWindow | None = None) -> None:
        key = (rider_id, window)
        if key == self._key and self._unsubscribe is not None:
            return
        self._drop()
        self._token += 1
        token = self._token
        self._key = key
        logger.info("watching telemetry for rider=%s window=%s", rider_id, window)

        def on_change(records: list[dict[str, Any]]) -> None:
            self._on_snapshot(token, window, records)

        self._unsubscribe = self._store.subscribe(TELEMETRY, {"rider_id": rider_id}, on_change)

    def _on_snapshot(self, token: int, window: TimeWindow | None, records: list[dict[str, Any]]) -> None:
        if token != self._token:
            logger.debug("dropping snapshot for a previous rider/window")
            return
        summary = summarize_records(records, window)
        self.latest = summary
        self._display(summary)

    def _drop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def close(self) -> None:
        self._drop()
        self._token += 1
        self._key = None
