"""Error taxonomy shared by the session and telemetry components."""

from __future__ import annotations


class TrackerError(Exception):
    """Base class; `str(exc)` is meant to be shown to the rider as-is."""


class ValidationError(TrackerError, ValueError):
    """Rejected locally (e.g. empty rider name); nothing was changed."""


class LocationPermissionError(TrackerError, PermissionError):
    """Location access denied. Fatal to arming, never retried silently."""


class GeolocationUnsupported(TrackerError):
    """The host has no usable location capability."""


class TransientProviderError(TrackerError):
    """A single fix timed out or was unavailable; the heartbeat covers it."""


class StoreUnavailable(TrackerError):
    """A store read or write failed."""


class TelemetryWriteFailure(TrackerError):
    """A telemetry append failed. Logged and dropped."""
