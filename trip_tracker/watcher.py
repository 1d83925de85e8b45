"""Location watcher: continuous position feed with a heartbeat fallback.

While armed the watcher owns exactly one handle per capability: the position
subscription, the heartbeat task, the visibility subscription and the screen
lock. `disarm()` releases all of them on every path, and every callback checks
the arm generation it was created for, so a fix that was already scheduled
when `disarm()` ran never reaches the writer.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Callable

from trip_tracker.config import TrackerConfig
from trip_tracker.devices import (
    LocationProvider,
    PositionError,
    PositionOptions,
    ScreenLock,
    ScreenLockHandle,
    Subscription,
    VisibilitySource,
)
from trip_tracker.errors import TrackerError
from trip_tracker.models import Fix, SessionBinding
from trip_tracker.writer import TelemetryWriter

logger = logging.getLogger(__name__)


class LocationWatcher:
    """Produces telemetry while armed, tolerant of provider silence."""

    def __init__(
        self,
        provider: LocationProvider,
        writer: TelemetryWriter,
        *,
        screen_lock: ScreenLock | None = None,
        visibility: VisibilitySource | None = None,
        config: TrackerConfig | None = None,
        on_fatal: Callable[[TrackerError], None] | None = None,
    ) -> None:
        self._provider = provider
        self._writer = writer
        self._screen_lock = screen_lock
        self._visibility = visibility
        self._cfg = config or TrackerConfig()
        self.on_fatal = on_fatal

        self._armed = False
        self._arming = False
        self._generation = 0
        self._binding: SessionBinding | None = None
        self._last_fix_at: float | None = None
        self._first_outcome: asyncio.Future[Fix | PositionError] | None = None

        self._position_sub: Subscription | None = None
        self._heartbeat: asyncio.Task[None] | None = None
        self._visibility_sub: Subscription | None = None
        self._lock_handle: ScreenLockHandle | None = None
        self._lock_task: asyncio.Task[None] | None = None

        self.fixes = 0
        self.heartbeat_fixes = 0

    @property
    def armed(self) -> bool:
        return self._armed

    @property
    def binding(self) -> SessionBinding | None:
        return self._binding

    @property
    def holds_screen_lock(self) -> bool:
        return self._lock_handle is not None and not self._lock_handle.released

    def _options(self) -> PositionOptions:
        return PositionOptions(
            high_accuracy=self._cfg.high_accuracy,
            maximum_age_seconds=0.0,
            timeout_seconds=self._cfg.fix_timeout_seconds,
        )

    def _is_current(self, generation: int) -> bool:
        return self._armed and generation == self._generation

    # -- lifecycle ------------------------------------------------------------

    async def arm(self, binding: SessionBinding) -> None:
        """Start sampling for `binding`.

        Raises:
            LocationPermissionError: location denied on the first outcome.
            GeolocationUnsupported: the provider cannot watch positions.
            RuntimeError: already armed, or disarmed while arming.
        """

        if self._armed:
            raise RuntimeError("watcher is already armed")

        loop = asyncio.get_running_loop()
        self._generation += 1
        gen = self._generation
        self._armed = True
        self._arming = True
        self._binding = binding
        self._last_fix_at = loop.time()
        self._first_outcome = loop.create_future()
        try:
            await self._acquire_screen_lock(gen)
            self._check_still_arming(gen)
            if self._visibility is not None:
                self._visibility_sub = self._visibility.subscribe(self._on_visibility)
            self._position_sub = self._provider.watch_position(
                partial(self._handle_fix, gen),
                partial(self._handle_error, gen),
                self._options(),
            )
            self._heartbeat = loop.create_task(self._heartbeat_loop(gen))
            await self._await_first_outcome(gen)
        except PositionError as exc:
            self.disarm()
            raise exc.to_tracker_error() from exc
        except BaseException:
            self.disarm()
            raise
        finally:
            self._arming = False
            self._first_outcome = None
        logger.info("watcher armed for session %s", binding.session_id)

    def _check_still_arming(self, gen: int) -> None:
        if not self._is_current(gen):
            raise RuntimeError("watcher was disarmed while arming")

    async def _await_first_outcome(self, gen: int) -> None:
        fut = self._first_outcome
        if fut is None or self._cfg.arm_settle_seconds <= 0:
            return
        await asyncio.wait({fut}, timeout=self._cfg.arm_settle_seconds)
        self._check_still_arming(gen)
        if fut.done() and not fut.cancelled():
            outcome = fut.result()
            if isinstance(outcome, PositionError) and not outcome.kind.transient:
                raise outcome

    def disarm(self) -> None:
        """Stop sampling and release everything. Safe to call any time."""

        was_armed = self._armed
        self._armed = False
        self._generation += 1

        if self._position_sub is not None:
            self._position_sub.cancel()
            self._position_sub = None
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None
        if self._lock_task is not None:
            self._lock_task.cancel()
            self._lock_task = None
        if self._visibility_sub is not None:
            self._visibility_sub.cancel()
            self._visibility_sub = None
        if self._lock_handle is not None:
            self._lock_handle.release()
            self._lock_handle = None
        if self._first_outcome is not None and not self._first_outcome.done():
            self._first_outcome.cancel()

        if was_armed:
            logger.info("watcher disarmed (session %s)", self._binding.session_id if self._binding else "-")
        self._binding = None

    # -- callbacks ------------------------------------------------------------

    def _handle_fix(self, gen: int, fix: Fix) -> None:
        if not self._is_current(gen) or self._binding is None:
            logger.debug("dropping fix delivered after disarm")
            return
        self._last_fix_at = asyncio.get_running_loop().time()
        self.fixes += 1
        if self._first_outcome is not None and not self._first_outcome.done():
            self._first_outcome.set_result(fix)
        self._writer.write(fix, self._binding)

    def _handle_error(self, gen: int, err: PositionError) -> None:
        if not self._is_current(gen):
            return
        if self._first_outcome is not None and not self._first_outcome.done():
            self._first_outcome.set_result(err)
        if err.kind.transient:
            # the subscription keeps running; the heartbeat will force a new fix
            logger.debug("transient position error (%s): %s", err.kind.value, err)
            return
        if self._arming:
            # arm() raises this to its caller
            return
        logger.error("fatal position error (%s): %s", err.kind.value, err)
        self.disarm()
        if self.on_fatal is not None:
            self.on_fatal(err.to_tracker_error())

    async def _heartbeat_loop(self, gen: int) -> None:
        interval = self._cfg.heartbeat_interval_seconds
        loop = asyncio.get_running_loop()
        while self._is_current(gen):
            await asyncio.sleep(interval)
            if not self._is_current(gen):
                return
            silent = loop.time() - (self._last_fix_at or 0.0)
            if silent < interval:
                continue
            logger.info("no fix for %.0fs, forcing a fresh position", silent)
            await self._force_fix(gen)

    async def _force_fix(self, gen: int) -> None:
        try:
            fix = await self._provider.get_current_position(self._options())
        except PositionError as err:
            self._handle_error(gen, err)
            return
        if self._is_current(gen):
            self.heartbeat_fixes += 1
        self._handle_fix(gen, fix)

    # -- screen retention -----------------------------------------------------

    async def _acquire_screen_lock(self, gen: int) -> None:
        if self._screen_lock is None:
            return
        try:
            handle = await self._screen_lock.request()
        except (PermissionError, OSError) as exc:
            logger.warning("screen lock not granted, will retry when visible: %s", exc)
            return
        if not self._is_current(gen):
            handle.release()
            return
        self._lock_handle = handle

    def _on_visibility(self, visible: bool) -> None:
        if not visible or not self._armed or self._screen_lock is None:
            return
        if self.holds_screen_lock:
            return
        if self._lock_task is not None and not self._lock_task.done():
            return
        logger.info("visible again, re-requesting screen lock")
        self._lock_task = asyncio.get_running_loop().create_task(self._acquire_screen_lock(self._generation))

