from __future__ import annotations

import asyncio

import pytest

from conftest import fast_config
from trip_tracker.devices import PositionErrorKind
from trip_tracker.errors import GeolocationUnsupported, LocationPermissionError, TrackerError
from trip_tracker.models import TELEMETRY
from trip_tracker.simulated import InProcessScreenLock, ManualVisibility, ScriptedLocationProvider
from trip_tracker.watcher import LocationWatcher
from trip_tracker.writer import TelemetryWriter


class Rig:
    def __init__(self, store, interval: float = 0.02, **config) -> None:
        self.provider = ScriptedLocationProvider(interval_seconds=interval)
        self.lock = InProcessScreenLock()
        self.visibility = ManualVisibility()
        self.writer = TelemetryWriter(store)
        self.fatal: list[TrackerError] = []
        self.watcher = LocationWatcher(
            self.provider,
            self.writer,
            screen_lock=self.lock,
            visibility=self.visibility,
            config=fast_config(**config),
            on_fatal=self.fatal.append,
        )

    def assert_released(self) -> None:
        assert not self.watcher.armed
        assert self.provider.active_watches == set()
        assert self.lock.held == set()
        assert self.visibility.subscribers == set()


def test_armed_watcher_writes_fixes_until_disarmed(store, binding) -> None:
    rig = Rig(store)

    async def scenario() -> int:
        await rig.watcher.arm(binding)
        assert rig.watcher.armed and rig.watcher.holds_screen_lock
        await asyncio.sleep(0.1)
        rig.watcher.disarm()
        await rig.writer.drain()
        written = rig.writer.written
        await asyncio.sleep(0.1)
        await rig.writer.drain()
        assert rig.writer.written == written
        return written

    assert asyncio.run(scenario()) >= 2
    rig.assert_released()
    rows = asyncio.run(store.query(TELEMETRY))
    assert {r["session_id"] for r in rows} == {"sess_1"}


def test_fix_already_in_flight_at_disarm_is_dropped(store, binding) -> None:
    rig = Rig(store, interval=10.0)

    async def scenario() -> None:
        await rig.watcher.arm(binding)
        before = rig.watcher.fixes
        assert rig.provider.deliver_in_flight(0.01) == 1
        rig.watcher.disarm()
        await asyncio.sleep(0.05)
        await rig.writer.drain()
        assert rig.watcher.fixes == before

    asyncio.run(scenario())
    assert rig.writer.written == 1
    rig.assert_released()


def test_heartbeat_forces_a_fix_when_the_feed_stalls(store, binding) -> None:
    rig = Rig(store)
    rig.provider.stalled = True

    async def scenario() -> None:
        await rig.watcher.arm(binding)
        await asyncio.sleep(0.3)
        rig.watcher.disarm()
        await rig.writer.drain()

    asyncio.run(scenario())
    assert rig.watcher.heartbeat_fixes >= 1
    assert rig.provider.oneshot_calls >= 1
    assert rig.writer.written == rig.watcher.heartbeat_fixes


def test_no_heartbeat_while_fixes_keep_coming(store, binding) -> None:
    rig = Rig(store, interval=0.01, heartbeat_interval_seconds=0.1)

    async def scenario() -> None:
        await rig.watcher.arm(binding)
        await asyncio.sleep(0.35)
        rig.watcher.disarm()
        await rig.writer.drain()

    asyncio.run(scenario())
    assert rig.watcher.heartbeat_fixes == 0


def test_permission_denied_while_arming(store, binding) -> None:
    rig = Rig(store)
    rig.provider.permission_granted = False

    with pytest.raises(LocationPermissionError):
        asyncio.run(rig.watcher.arm(binding))
    rig.assert_released()
    assert rig.fatal == []


def test_unsupported_provider(store, binding) -> None:
    rig = Rig(store)
    rig.provider.supported = False

    with pytest.raises(GeolocationUnsupported):
        asyncio.run(rig.watcher.arm(binding))
    rig.assert_released()


def test_arming_twice_is_refused(store, binding) -> None:
    rig = Rig(store)

    async def scenario() -> None:
        await rig.watcher.arm(binding)
        with pytest.raises(RuntimeError):
            await rig.watcher.arm(binding)
        assert len(rig.provider.active_watches) == 1
        rig.watcher.disarm()

    asyncio.run(scenario())
    rig.assert_released()


def test_repeated_arm_cycles_hold_one_subscription(store, binding) -> None:
    rig = Rig(store)

    async def scenario() -> None:
        for _ in range(3):
            await rig.watcher.arm(binding)
            assert len(rig.provider.active_watches) == 1
            assert len(rig.lock.held) == 1
            assert len(rig.visibility.subscribers) == 1
            rig.watcher.disarm()
            rig.watcher.disarm()

    asyncio.run(scenario())
    assert rig.provider.watch_calls == 3
    rig.assert_released()


def test_transient_errors_keep_the_watcher_armed(store, binding) -> None:
    rig = Rig(store)
    rig.provider.watch_errors = [PositionErrorKind.TIMEOUT, PositionErrorKind.UNAVAILABLE]

    async def scenario() -> None:
        await rig.watcher.arm(binding)
        await asyncio.sleep(0.1)
        assert rig.watcher.armed
        assert rig.watcher.fixes >= 1
        rig.watcher.disarm()

    asyncio.run(scenario())
    assert rig.fatal == []


def test_permission_revoked_while_online(store, binding) -> None:
    rig = Rig(store)

    async def scenario() -> None:
        await rig.watcher.arm(binding)
        rig.provider.permission_granted = False
        await asyncio.sleep(0.1)

    asyncio.run(scenario())
    assert len(rig.fatal) == 1
    assert isinstance(rig.fatal[0], LocationPermissionError)
    rig.assert_released()


def test_screen_lock_is_requested_again_when_visible(store, binding) -> None:
    rig = Rig(store)

    async def scenario() -> None:
        await rig.watcher.arm(binding)
        rig.lock.revoke_all()
        rig.visibility.set_visible(False)
        assert not rig.watcher.holds_screen_lock
        rig.visibility.set_visible(True)
        await asyncio.sleep(0.01)
        assert rig.watcher.holds_screen_lock
        assert rig.lock.requests == 2
        # already held: no new request
        rig.visibility.set_visible(True)
        await asyncio.sleep(0.01)
        assert rig.lock.requests == 2
        rig.watcher.disarm()

    asyncio.run(scenario())
    rig.assert_released()


def test_denied_screen_lock_does_not_stop_tracking(store, binding) -> None:
    rig = Rig(store)
    rig.lock.deny = True

    async def scenario() -> None:
        await rig.watcher.arm(binding)
        assert rig.watcher.armed
        assert not rig.watcher.holds_screen_lock
        rig.watcher.disarm()

    asyncio.run(scenario())
    assert rig.lock.requests == 1
