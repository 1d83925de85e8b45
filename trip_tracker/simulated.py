"""Simulated device backends for demos and tests.

Everything here runs on the asyncio event loop: continuous fixes are timer
callbacks scheduled with `loop.call_later`, the same way a host delivers
position callbacks.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from typing import Callable, Iterator, Sequence

from trip_tracker.devices import PositionError, PositionErrorKind, PositionOptions, Subscription
from trip_tracker.models import Fix
from trip_tracker.timeutils import now_ms


@dataclass(frozen=True, slots=True)
class Waypoint:
    lat: float
    lng: float
    speed_mps: float | None = None
    accuracy_m: float | None = 5.0


def demo_route(
    n: int = 60,
    start: tuple[float, float] = (12.9716, 77.5946),
    step: tuple[float, float] = (0.0004, 0.0003),
    speed_mps: float = 6.0,
) -> list[Waypoint]:
    """A straight-ish ride out of central Bangalore, one waypoint per step."""

    lat0, lng0 = start
    dlat, dlng = step
    return [
        Waypoint(lat=lat0 + i * dlat, lng=lng0 + i * dlng, speed_mps=speed_mps + (i % 5) * 0.5)
        for i in range(max(1, n))
    ]


class _ScriptedWatch:
    def __init__(
        self,
        provider: ScriptedLocationProvider,
        on_fix: Callable[[Fix], None],
        on_error: Callable[[PositionError], None],
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._provider = provider
        self._on_fix = on_fix
        self._on_error = on_error
        self._loop = loop
        self._timer: asyncio.TimerHandle | None = None
        self.cancelled = False

    def start(self) -> None:
        self._timer = self._loop.call_later(self._provider.first_fix_delay_seconds, self._tick)

    def _tick(self) -> None:
        if self.cancelled:
            return
        p = self._provider
        if not p.permission_granted:
            self._on_error(PositionError(PositionErrorKind.PERMISSION_DENIED, "user denied location"))
        elif p.watch_errors:
            self._on_error(PositionError(p.watch_errors.pop(0)))
        elif not p.stalled:
            self._on_fix(p.next_fix())
        if not self.cancelled:
            self._timer = self._loop.call_later(p.interval_seconds, self._tick)

    def deliver_late(self, fix: Fix, delay_seconds: float) -> None:
        """Schedule a callback that fires even if the watch is cancelled meanwhile."""

        self._loop.call_later(delay_seconds, self._on_fix, fix)

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._provider.active_watches.discard(self)


class ScriptedLocationProvider:
    """Replays waypoints as fixes.

    Knobs (plain attributes, flip them from a test or demo):
        supported: False -> every request raises UNSUPPORTED.
        permission_granted: False -> PERMISSION_DENIED everywhere.
        stalled: True -> the continuous feed goes silent (backgrounded provider).
        watch_errors / oneshot_errors: error kinds to report before the next fixes.
    """

    def __init__(
        self,
        route: Sequence[Waypoint] | None = None,
        *,
        interval_seconds: float = 1.0,
        first_fix_delay_seconds: float = 0.0,
        oneshot_delay_seconds: float = 0.0,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._route = list(route or demo_route())
        self._cursor: Iterator[Waypoint] = itertools.cycle(self._route)
        self._clock = clock
        self.interval_seconds = interval_seconds
        self.first_fix_delay_seconds = first_fix_delay_seconds
        self.oneshot_delay_seconds = oneshot_delay_seconds
        self.supported = True
        self.permission_granted = True
        self.stalled = False
        self.watch_errors: list[PositionErrorKind] = []
        self.oneshot_errors: list[PositionErrorKind] = []
        self.active_watches: set[_ScriptedWatch] = set()
        self.watch_calls = 0
        self.oneshot_calls = 0

    def next_fix(self) -> Fix:
        wp = next(self._cursor)
        return Fix(lat=wp.lat, lng=wp.lng, speed_mps=wp.speed_mps, accuracy_m=wp.accuracy_m, time_ms=self._clock())

    async def get_current_position(self, options: PositionOptions) -> Fix:
        self.oneshot_calls += 1
        if not self.supported:
            raise PositionError(PositionErrorKind.UNSUPPORTED, "no location hardware")
        if not self.permission_granted:
            raise PositionError(PositionErrorKind.PERMISSION_DENIED, "user denied location")
        if self.oneshot_errors:
            raise PositionError(self.oneshot_errors.pop(0))
        if self.oneshot_delay_seconds > options.timeout_seconds:
            await asyncio.sleep(options.timeout_seconds)
            raise PositionError(PositionErrorKind.TIMEOUT, "no fix within timeout")
        if self.oneshot_delay_seconds > 0:
            await asyncio.sleep(self.oneshot_delay_seconds)
        return self.next_fix()

    def watch_position(
        self,
        on_fix: Callable[[Fix], None],
        on_error: Callable[[PositionError], None],
        options: PositionOptions,
    ) -> Subscription:
        self.watch_calls += 1
        if not self.supported:
            raise PositionError(PositionErrorKind.UNSUPPORTED, "no location hardware")
        watch = _ScriptedWatch(self, on_fix, on_error, asyncio.get_running_loop())
        self.active_watches.add(watch)
        watch.start()
        return watch

    def deliver_in_flight(self, delay_seconds: float = 0.0) -> int:
        """Queue one fix per live watch that lands after `delay_seconds`, cancel or not."""

        watches = list(self.active_watches)
        for watch in watches:
            watch.deliver_late(self.next_fix(), delay_seconds)
        return len(watches)


class _ScreenLockHandle:
    def __init__(self, owner: InProcessScreenLock) -> None:
        self._owner = owner
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if not self._released:
            self._released = True
            self._owner.held.discard(self)


class InProcessScreenLock:
    """Screen retention that can be denied or revoked on demand."""

    def __init__(self) -> None:
        self.deny = False
        self.requests = 0
        self.held: set[_ScreenLockHandle] = set()

    async def request(self) -> _ScreenLockHandle:
        self.requests += 1
        if self.deny:
            raise PermissionError("screen lock denied by host")
        handle = _ScreenLockHandle(self)
        self.held.add(handle)
        return handle

    def revoke_all(self) -> None:
        """What a host does when the page/app goes to the background."""

        for handle in list(self.held):
            handle.release()


class _VisibilitySubscription:
    def __init__(self, owner: ManualVisibility, on_change: Callable[[bool], None]) -> None:
        self._owner = owner
        self.on_change = on_change

    def cancel(self) -> None:
        self._owner.subscribers.discard(self)


class ManualVisibility:
    """Visibility changes driven by the caller."""

    def __init__(self) -> None:
        self.visible = True
        self.subscribers: set[_VisibilitySubscription] = set()

    def subscribe(self, on_change: Callable[[bool], None]) -> Subscription:
        sub = _VisibilitySubscription(self, on_change)
        self.subscribers.add(sub)
        return sub

    def set_visible(self, visible: bool) -> None:
        self.visible = visible
        for sub in list(self.subscribers):
            sub.on_change(visible)


class StaticConnectivity:
    def __init__(self, online: bool = True) -> None:
        self.online = online

    def is_online(self) -> bool:
        return self.online
