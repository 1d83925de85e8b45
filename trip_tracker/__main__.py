"""Module entry point: python -m trip_tracker ..."""

from __future__ import annotations

from trip_tracker.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
