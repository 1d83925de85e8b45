"""Session controller: the on-duty state machine.

    OFFLINE --go_online--> CHECKING --> ONLINE
                              |            |
                              v            v
                            ERROR <--------+      (any) --go_offline--> OFFLINE

The current rider/session lives in an immutable `SessionContext` that callers
pass into every transition and get back from it. The controller itself only
keeps the flags it needs to refuse a second concurrent transition and to
handle a fatal watcher error that arrives between commands.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from trip_tracker.config import TrackerConfig
from trip_tracker.errors import StoreUnavailable, TrackerError, ValidationError
from trip_tracker.models import (
    SESSIONS,
    USERS,
    CheckStatus,
    DiagnosticsState,
    Rider,
    SessionBinding,
    SessionStatus,
)
from trip_tracker.prefs import RiderPreferences
from trip_tracker.prober import DiagnosticsProber
from trip_tracker.store import SERVER_TIMESTAMP, Store
from trip_tracker.timeutils import now_ms
from trip_tracker.watcher import LocationWatcher

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    OFFLINE = "offline"
    CHECKING = "checking"
    ONLINE = "online"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class SessionContext:
    """Everything a caller needs to know about the rider's duty state."""

    state: SessionState = SessionState.OFFLINE
    rider: Rider | None = None
    session_id: str | None = None
    session_doc_id: str | None = None
    diagnostics: DiagnosticsState = DiagnosticsState()
    error: str | None = None

    @property
    def online(self) -> bool:
        return self.state is SessionState.ONLINE

    def evolve(self, **changes: object) -> SessionContext:
        return dataclasses.replace(self, **changes)


def placeholder_name(rng: random.Random | None = None) -> str:
    return f"Rider_{(rng or random).randrange(1000)}"


class SessionController:
    """Starts/stops watching and writing, and keeps the session record honest."""

    def __init__(
        self,
        store: Store,
        prober: DiagnosticsProber,
        watcher: LocationWatcher,
        *,
        config: TrackerConfig | None = None,
        prefs: RiderPreferences | None = None,
        clock: Callable[[], int] = now_ms,
        on_state_change: Callable[[SessionContext], None] | None = None,
    ) -> None:
        self._store = store
        self._prober = prober
        self._watcher = watcher
        self._cfg = config or TrackerConfig()
        self._prefs = prefs
        self._clock = clock
        self.on_state_change = on_state_change
        self._transition = False
        self._stop_requested = False
        # session the watcher is currently bound to; used by the fatal-error path
        self._live: SessionContext | None = None
        self._closing: set[asyncio.Task[bool]] = set()
        watcher.on_fatal = self._on_watcher_fatal

    def initial_context(self) -> SessionContext:
        """OFFLINE context seeded with the rider name saved on this device."""

        name = self._prefs.rider_name() if self._prefs is not None else ""
        rider = Rider.from_name(name) if name.strip() else None
        return SessionContext(rider=rider, diagnostics=self._prober.last)

    def _emit(self, ctx: SessionContext) -> SessionContext:
        if self.on_state_change is not None:
            self.on_state_change(ctx)
        return ctx

    async def diagnose(self, ctx: SessionContext) -> SessionContext:
        return ctx.evolve(diagnostics=await self._prober.probe())

    async def toggle(self, ctx: SessionContext, checked: bool, display_name: str = "") -> SessionContext:
        """The duty switch: checked -> go online, unchecked -> go offline."""

        if checked:
            return await self.go_online(ctx, display_name)
        return await self.go_offline(ctx)

    # -- going online ---------------------------------------------------------

    def _resolve_rider(self, display_name: str) -> Rider:
        name = display_name.strip()
        if not name:
            if not self._cfg.allow_placeholder_name:
                raise ValidationError("Please enter a rider name before going on duty.")
            name = placeholder_name()
            logger.info("no rider name given, using placeholder %s", name)
        return Rider.from_name(name)

    async def go_online(self, ctx: SessionContext, display_name: str = "") -> SessionContext:
        """OFFLINE/ERROR -> CHECKING -> ONLINE, or back to a stable state.

        Never leaves the watcher armed without a session record.
        """

        if ctx.online or self._watcher.armed or self._transition:
            logger.info("go online ignored: already on duty or a transition is running")
            return ctx

        try:
            rider = self._resolve_rider(display_name or (ctx.rider.display_name if ctx.rider else ""))
        except ValidationError as exc:
            logger.warning("go online rejected: %s", exc)
            return ctx.evolve(error=str(exc))

        self._transition = True
        self._stop_requested = False
        try:
            return await self._go_online(ctx.evolve(rider=rider, error=None), rider)
        finally:
            self._transition = False

    async def _go_online(self, ctx: SessionContext, rider: Rider) -> SessionContext:
        ctx = self._emit(ctx.evolve(state=SessionState.CHECKING))

        diag = ctx.diagnostics
        if diag.location is not CheckStatus.OK or diag.store is not CheckStatus.OK:
            diag = await self._prober.probe()
            ctx = ctx.evolve(diagnostics=diag)
            if self._stop_requested:
                return self._emit(ctx.evolve(state=SessionState.OFFLINE))
        if diag.location is CheckStatus.ERROR:
            message = "Cannot start: location check failed."
            if diag.permission_denied:
                message = "Cannot start: location permission denied. Please allow location access."
            logger.error("%s (%s)", message, diag.location_error)
            return self._emit(ctx.evolve(state=SessionState.ERROR, error=message))

        await self._register_rider(rider)

        try:
            session_doc_id = await self._store.insert(
                SESSIONS,
                {
                    "rider_id": rider.id,
                    "rider_name": rider.display_name,
                    "start_time": SERVER_TIMESTAMP,
                    "status": SessionStatus.ACTIVE.value,
                },
            )
        except Exception as exc:
            failure = StoreUnavailable(f"Could not create tracking session: {exc}")
            logger.error("%s", failure)
            return self._emit(ctx.evolve(state=SessionState.OFFLINE, error=str(failure)))

        binding = SessionBinding(
            session_id=f"sess_{self._clock()}",
            session_doc_id=session_doc_id,
            rider_id=rider.id,
            rider_name=rider.display_name,
        )
        ctx = ctx.evolve(session_id=binding.session_id, session_doc_id=session_doc_id)

        if self._stop_requested:
            await self._close_session(session_doc_id)
            return self._emit(ctx.evolve(state=SessionState.OFFLINE, session_id=None, session_doc_id=None))

        try:
            await self._watcher.arm(binding)
        except (TrackerError, RuntimeError) as exc:
            self._watcher.disarm()
            await self._close_session(session_doc_id)
            if self._stop_requested:
                return self._emit(ctx.evolve(state=SessionState.OFFLINE, session_id=None, session_doc_id=None))
            logger.error("could not start tracking: %s", exc)
            return self._emit(
                ctx.evolve(state=SessionState.ERROR, session_id=None, session_doc_id=None, error=str(exc))
            )

        if self._prefs is not None:
            try:
                self._prefs.save_rider_name(rider.display_name)
            except OSError as exc:
                logger.warning("could not save rider name: %s", exc)
        ctx = ctx.evolve(state=SessionState.ONLINE, error=None)
        self._live = ctx
        logger.info("on duty: rider=%s session=%s doc=%s", rider.id, binding.session_id, session_doc_id)
        return self._emit(ctx)

    async def _register_rider(self, rider: Rider) -> None:
        try:
            await self._store.upsert(
                USERS,
                rider.id,
                {"name": rider.display_name, "last_active": SERVER_TIMESTAMP, "type": "rider"},
                merge=True,
            )
        except Exception as exc:
            logger.warning("could not save rider profile for %s: %s", rider.id, exc)

    # -- going offline --------------------------------------------------------

    async def go_offline(self, ctx: SessionContext) -> SessionContext:
        """Any state -> OFFLINE. The watcher is disarmed before any store call."""

        self._watcher.disarm()
        if self._transition:
            self._stop_requested = True
        doc_id = ctx.session_doc_id
        if doc_id is None and self._live is not None:
            doc_id = self._live.session_doc_id
        self._live = None
        if doc_id is not None:
            await self._close_session(doc_id)
        logger.info("off duty")
        return self._emit(ctx.evolve(state=SessionState.OFFLINE, session_id=None, session_doc_id=None, error=None))

    async def _close_session(self, doc_id: str) -> bool:
        try:
            await self._store.update(
                SESSIONS,
                doc_id,
                {"end_time": SERVER_TIMESTAMP, "status": SessionStatus.COMPLETED.value},
            )
        except Exception as exc:
            # the session stays ACTIVE in the store (orphan); analytics treats it as ongoing
            logger.error("error closing session %s: %s", doc_id, exc)
            return False
        return True

    # -- fatal watcher errors -------------------------------------------------

    def _on_watcher_fatal(self, error: TrackerError) -> None:
        live = self._live
        self._live = None
        if live is None:
            return
        logger.error("tracking stopped: %s", error)
        if live.session_doc_id is not None:
            task = asyncio.get_running_loop().create_task(self._close_session(live.session_doc_id))
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)
        self._emit(live.evolve(state=SessionState.ERROR, session_id=None, session_doc_id=None, error=str(error)))

    async def drain(self) -> None:
        """Wait for session closes started from the fatal-error path."""

        while self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)
