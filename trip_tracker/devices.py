"""Device capability contracts the tracker depends on.

Positions, screen retention, visibility and connectivity are host
capabilities. Each callback-style API is exposed as a cancellable
`Subscription` so owners can hold exactly one handle per capability.
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

from trip_tracker.errors import (
    GeolocationUnsupported,
    LocationPermissionError,
    TrackerError,
    TransientProviderError,
)
from trip_tracker.models import Fix

logger = logging.getLogger(__name__)


class PositionErrorKind(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    UNSUPPORTED = "unsupported"

    @property
    def transient(self) -> bool:
        return self in (PositionErrorKind.UNAVAILABLE, PositionErrorKind.TIMEOUT)


class PositionError(Exception):
    """Failure reported by a location provider for one request or callback."""

    def __init__(self, kind: PositionErrorKind, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind

    def to_tracker_error(self) -> TrackerError:
        if self.kind is PositionErrorKind.PERMISSION_DENIED:
            return LocationPermissionError(f"Location permission denied: {self}")
        if self.kind is PositionErrorKind.UNSUPPORTED:
            return GeolocationUnsupported(f"Geolocation is not supported on this device: {self}")
        return TransientProviderError(f"Location fix failed ({self.kind.value}): {self}")


@dataclass(frozen=True, slots=True)
class PositionOptions:
    """Request options. maximum_age=0 means a cached position is never accepted."""

    high_accuracy: bool = True
    maximum_age_seconds: float = 0.0
    timeout_seconds: float = 20.0


class Subscription(Protocol):
    def cancel(self) -> None: ...


class LocationProvider(Protocol):
    async def get_current_position(self, options: PositionOptions) -> Fix:
        """One-shot fix. Raises PositionError."""
        ...

    def watch_position(
        self,
        on_fix: Callable[[Fix], None],
        on_error: Callable[[PositionError], None],
        options: PositionOptions,
    ) -> Subscription:
        """Continuous fixes until cancelled. May raise PositionError (UNSUPPORTED)."""
        ...


class ScreenLockHandle(Protocol):
    @property
    def released(self) -> bool: ...

    def release(self) -> None: ...


class ScreenLock(Protocol):
    async def request(self) -> ScreenLockHandle:
        """Acquire screen retention. Raises PermissionError/OSError when denied."""
        ...


class VisibilitySource(Protocol):
    def subscribe(self, on_change: Callable[[bool], None]) -> Subscription: ...


class ConnectivityMonitor(Protocol):
    def is_online(self) -> bool: ...


class _NoopSubscription:
    def cancel(self) -> None:
        return None


class NullVisibility:
    """Hosts without a foreground/background notion never report changes."""

    def subscribe(self, on_change: Callable[[bool], None]) -> Subscription:
        return _NoopSubscription()


class RouteConnectivity:
    """OS-level connectivity: is there a route to a public address?

    A UDP connect() only consults the routing table; no packet is sent.
    """

    def __init__(self, probe_host: str = "8.8.8.8", probe_port: int = 53) -> None:
        self._addr = (probe_host, probe_port)

    def is_online(self) -> bool:
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
                s.connect(self._addr)
        except OSError as exc:
            logger.debug("no route to %s: %s", self._addr[0], exc)
            return False
        return True
