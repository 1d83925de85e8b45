"""Runtime configuration for the rider-side tracker."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from trip_tracker.models import DEFAULT_TZ

DEFAULT_STORE_PATH: Final[str] = "tracker_store.json"
DEFAULT_PREFS_PATH: Final[Path] = Path.home() / ".trip_tracker" / "prefs.json"


@dataclass(frozen=True, slots=True)
class TrackerConfig:
    """Tunables for the watcher, prober and session controller."""

    # Heartbeat: force a fresh fix when the continuous feed was silent this long.
    heartbeat_interval_seconds: float = 30.0
    # Per-fix timeout handed to the provider.
    fix_timeout_seconds: float = 20.0
    # One-shot location check during diagnostics.
    probe_timeout_seconds: float = 10.0
    # How long arm() waits for the first fix/error before reporting success.
    arm_settle_seconds: float = 5.0
    high_accuracy: bool = True
    # When False, "go online" with an empty name is rejected.
    allow_placeholder_name: bool = False
    tz_name: str = DEFAULT_TZ

    def __post_init__(self) -> None:
        if self.heartbeat_interval_seconds <= 0:
            raise ValueError("heartbeat_interval_seconds must be positive")
        if self.fix_timeout_seconds <= 0 or self.probe_timeout_seconds <= 0:
            raise ValueError("timeouts must be positive")
        if self.arm_settle_seconds < 0:
            raise ValueError("arm_settle_seconds must not be negative")


def add_config_arguments(p: argparse.ArgumentParser) -> None:
    """Register the TrackerConfig flags on a sub-command parser."""

    defaults = TrackerConfig()
    p.add_argument(
        "--heartbeat-seconds",
        type=float,
        default=defaults.heartbeat_interval_seconds,
        help="force a fresh fix when no position arrived for this long",
    )
    p.add_argument(
        "--fix-timeout-seconds",
        type=float,
        default=defaults.fix_timeout_seconds,
        help="per-fix timeout handed to the location provider",
    )
    p.add_argument(
        "--probe-timeout-seconds",
        type=float,
        default=defaults.probe_timeout_seconds,
        help="timeout of the one-shot location check",
    )
    p.add_argument(
        "--allow-placeholder-name",
        action="store_true",
        help="assign a generated Rider_<n> name instead of rejecting an empty name",
    )


def config_from_args(args: argparse.Namespace) -> TrackerConfig:
    return TrackerConfig(
        heartbeat_interval_seconds=args.heartbeat_seconds,
        fix_timeout_seconds=args.fix_timeout_seconds,
        probe_timeout_seconds=args.probe_timeout_seconds,
        allow_placeholder_name=bool(args.allow_placeholder_name),
        tz_name=getattr(args, "tz", DEFAULT_TZ),
    )
