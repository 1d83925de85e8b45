"""Fire-and-forget telemetry appends."""

from __future__ import annotations

import asyncio
import logging

from trip_tracker.errors import TelemetryWriteFailure
from trip_tracker.models import TELEMETRY, Fix, SessionBinding, fix_to_record
from trip_tracker.store import SERVER_TIMESTAMP, Store

logger = logging.getLogger(__name__)


class TelemetryWriter:
    """Appends one `tracking_data` row per fix without blocking the caller.

    Failed writes are logged and dropped: sample loss is an accepted
    degradation, never retried and never an error for the session.
    """

    def __init__(self, store: Store) -> None:
        self._store = store
        self._pending: set[asyncio.Task[None]] = set()
        self.written = 0
        self.dropped = 0

    def write(self, fix: Fix, binding: SessionBinding) -> None:
        """Schedule the append on the running loop and return immediately."""

        record = fix_to_record(fix, binding, SERVER_TIMESTAMP)
        task = asyncio.get_running_loop().create_task(self._append(record))
        # the loop only keeps weak references to tasks
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _append(self, record: dict[str, object]) -> None:
        try:
            await self._store.insert(TELEMETRY, record)
        except Exception as exc:
            self.dropped += 1
            failure = TelemetryWriteFailure(f"telemetry packet dropped: {exc}")
            logger.warning("%s (session=%s)", failure, record.get("session_id"))
            return
        self.written += 1

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every scheduled append to finish (shutdown and tests)."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
