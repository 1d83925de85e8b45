"""Termux:API device backends (Android phones running Termux).

`termux-location` prints one JSON object per fix, pretty-printed over several
lines, so output is framed by counting braces rather than by line.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from typing import Any, Callable

from trip_tracker.devices import PositionError, PositionErrorKind, PositionOptions, Subscription
from trip_tracker.models import Fix
from trip_tracker.timeutils import now_ms

logger = logging.getLogger(__name__)


class JsonObjectFramer:
    """Accumulates lines until the braces balance, then yields the parsed object."""

    def __init__(self) -> None:
        self._buffer = ""
        self._depth = 0

    def feed(self, line: str) -> list[dict[str, Any]]:
        self._buffer += line
        self._depth += line.count("{") - line.count("}")
        if self._depth > 0 or not self._buffer.strip():
            return []
        text, self._buffer, self._depth = self._buffer, "", 0
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("discarding unparsable location output: %r", text[:200])
            return []
        if not isinstance(data, dict) or not data:
            return []
        return [data]


def _error_kind(message: str) -> PositionErrorKind:
    if "permission" in message.lower():
        return PositionErrorKind.PERMISSION_DENIED
    return PositionErrorKind.UNAVAILABLE


def fix_from_termux(data: dict[str, Any], clock: Callable[[], int] = now_ms) -> Fix:
    """Turn one `termux-location` object into a Fix.

    Raises:
        PositionError: the object is an API error or has no coordinates.
    """

    error = data.get("API_ERROR") or data.get("error")
    if error:
        raise PositionError(_error_kind(str(error)), str(error))
    try:
        lat = float(data["latitude"])
        lng = float(data["longitude"])
    except (KeyError, TypeError, ValueError) as exc:
        raise PositionError(PositionErrorKind.UNAVAILABLE, f"no coordinates in {sorted(data)}") from exc
    speed = data.get("speed")
    accuracy = data.get("accuracy")
    return Fix(
        lat=lat,
        lng=lng,
        speed_mps=float(speed) if isinstance(speed, (int, float)) else None,
        accuracy_m=float(accuracy) if isinstance(accuracy, (int, float)) else None,
        time_ms=clock(),
    )


class _UpdatesSubscription:
    def __init__(self, task: asyncio.Task[None]) -> None:
        self._task = task

    def cancel(self) -> None:
        self._task.cancel()


class TermuxLocationProvider:
    """LocationProvider backed by the `termux-location` command."""

    def __init__(
        self,
        provider: str = "gps",
        binary: str = "termux-location",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._provider = provider
        self._binary = binary
        self._clock = clock

    def _command(self, mode: str) -> list[str]:
        return [self._binary, "-p", self._provider, "-r", mode]

    async def _spawn(self, mode: str) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *self._command(mode),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise PositionError(PositionErrorKind.UNSUPPORTED, f"{self._binary} not found; install Termux:API") from exc

    async def get_current_position(self, options: PositionOptions) -> Fix:
        proc = await self._spawn("once")
        try:
            out, err = await asyncio.wait_for(proc.communicate(), timeout=options.timeout_seconds)
        except TimeoutError:
            _kill(proc)
            await proc.wait()
            raise PositionError(PositionErrorKind.TIMEOUT, f"no fix within {options.timeout_seconds:.0f}s") from None

        framer = JsonObjectFramer()
        objects: list[dict[str, Any]] = []
        for line in out.decode("utf-8", errors="replace").splitlines(keepends=True):
            objects.extend(framer.feed(line))
        if not objects:
            message = err.decode("utf-8", errors="replace").strip() or "empty response"
            raise PositionError(_error_kind(message), message)
        return fix_from_termux(objects[-1], self._clock)

    def watch_position(
        self,
        on_fix: Callable[[Fix], None],
        on_error: Callable[[PositionError], None],
        options: PositionOptions,
    ) -> Subscription:
        if shutil.which(self._binary) is None:
            raise PositionError(PositionErrorKind.UNSUPPORTED, f"{self._binary} not found; install Termux:API")
        task = asyncio.get_running_loop().create_task(self._pump_updates(on_fix, on_error))
        return _UpdatesSubscription(task)

    async def _pump_updates(
        self, on_fix: Callable[[Fix], None], on_error: Callable[[PositionError], None]
    ) -> None:
        try:
            proc = await self._spawn("updates")
        except PositionError as err:
            on_error(err)
            return
        assert proc.stdout is not None
        framer = JsonObjectFramer()
        try:
            while True:
                raw = await proc.stdout.readline()
                if not raw:
                    break
                for data in framer.feed(raw.decode("utf-8", errors="replace")):
                    try:
                        fix = fix_from_termux(data, self._clock)
                    except PositionError as err:
                        on_error(err)
                        continue
                    on_fix(fix)
            code = await proc.wait()
            logger.warning("%s exited with status %s", self._binary, code)
            on_error(PositionError(PositionErrorKind.UNAVAILABLE, f"location updates ended (exit {code})"))
        finally:
            if proc.returncode is None:
                _kill(proc)
                await proc.wait()


def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass


class _WakeLockHandle:
    def __init__(self, owner: TermuxWakeLock) -> None:
        self._owner = owner
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._owner.schedule_unlock()


class TermuxWakeLock:
    """ScreenLock backed by `termux-wake-lock` / `termux-wake-unlock`."""

    def __init__(self, lock_binary: str = "termux-wake-lock", unlock_binary: str = "termux-wake-unlock") -> None:
        self._lock_binary = lock_binary
        self._unlock_binary = unlock_binary
        self._pending: set[asyncio.Task[None]] = set()

    async def _run(self, binary: str) -> None:
        proc = await asyncio.create_subprocess_exec(
            binary, stdout=asyncio.subprocess.DEVNULL, stderr=asyncio.subprocess.PIPE
        )
        _, err = await proc.communicate()
        if proc.returncode != 0:
            raise OSError(f"{binary} failed ({proc.returncode}): {err.decode('utf-8', errors='replace').strip()}")

    async def request(self) -> _WakeLockHandle:
        # FileNotFoundError is an OSError, which the watcher treats as "not granted"
        await self._run(self._lock_binary)
        logger.info("wake lock acquired")
        return _WakeLockHandle(self)

    def schedule_unlock(self) -> None:
        task = asyncio.get_running_loop().create_task(self._unlock())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _unlock(self) -> None:
        try:
            await self._run(self._unlock_binary)
        except OSError as exc:
            logger.warning("could not release wake lock: %s", exc)
            return
        logger.info("wake lock released")
