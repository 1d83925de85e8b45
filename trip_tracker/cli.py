"""Command-line interface for trip_tracker.

Run:
    python -m trip_tracker ride --name "Ravi Kumar" --duration 120
    python -m trip_tracker summarize --rider ravi_kumar --date 2025-06-01
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from datetime import date
from time import sleep

from trip_tracker.analytics import summarize
from trip_tracker.config import (
    DEFAULT_PREFS_PATH,
    DEFAULT_STORE_PATH,
    TrackerConfig,
    add_config_arguments,
    config_from_args,
)
from trip_tracker.controller import SessionContext, SessionController
from trip_tracker.csv_io import export_points_csv, load_points_csv
from trip_tracker.devices import ConnectivityMonitor, LocationProvider, NullVisibility, RouteConnectivity, ScreenLock
from trip_tracker.history import list_riders, load_history
from trip_tracker.inspect import inspect_points
from trip_tracker.models import DEFAULT_TZ, TELEMETRY, TelemetryPoint, TimeWindow, TripSummary, point_from_record
from trip_tracker.prefs import RiderPreferences
from trip_tracker.prober import DiagnosticsProber
from trip_tracker.realtime import RealtimeTripView
from trip_tracker.simulated import InProcessScreenLock, ScriptedLocationProvider, StaticConnectivity, demo_route
from trip_tracker.store import JsonFileStore
from trip_tracker.timeutils import dt_from_epoch_ms, epoch_ms_from_dt, format_clock_duration, parse_dt
from trip_tracker.watcher import LocationWatcher
from trip_tracker.writer import TelemetryWriter

logger = logging.getLogger(__name__)

# 9999-12-31 23:59:59.999 UTC, the open end of a window given only a start
_FAR_FUTURE_MS = 253_402_300_799_999


def _fmt_time(epoch_ms: int | None, tz_name: str) -> str:
    if epoch_ms is None:
        return "-"
    return dt_from_epoch_ms(epoch_ms, tz_name).isoformat(sep=" ", timespec="seconds")


def _window_from_args(args: argparse.Namespace) -> TimeWindow | None:
    if getattr(args, "date", None):
        return TimeWindow.for_day(date.fromisoformat(args.date), args.tz)
    start, end = getattr(args, "range_start", None), getattr(args, "range_end", None)
    if start is None and end is None:
        return None
    start_ms = epoch_ms_from_dt(parse_dt(start, args.tz)) if start else 0
    end_ms = epoch_ms_from_dt(parse_dt(end, args.tz)) if end else _FAR_FUTURE_MS
    return TimeWindow(start_ms=start_ms, end_ms=end_ms)


async def _rider_points(store: JsonFileStore, rider_id: str) -> list[TelemetryPoint]:
    return [point_from_record(r) for r in await store.query(TELEMETRY, {"rider_id": rider_id})]


def _print_summary(summary: TripSummary, tz_name: str) -> None:
    print(
        f"distance_km={summary.distance_km:.3f} avg_kmh={summary.avg_speed_kmh:.1f} "
        f"max_kmh={summary.max_speed_kmh:.1f} duration={summary.duration_label} points={summary.point_count}"
    )
    if summary.start_ms is not None:
        print(f"first={_fmt_time(summary.start_ms, tz_name)} last={_fmt_time(summary.end_ms, tz_name)}")


# -- rider side ------------------------------------------------------------


def _devices(args: argparse.Namespace) -> tuple[LocationProvider, ScreenLock, ConnectivityMonitor]:
    if args.backend == "termux":
        from trip_tracker.termux import TermuxLocationProvider, TermuxWakeLock

        return TermuxLocationProvider(provider=args.termux_provider), TermuxWakeLock(), RouteConnectivity()
    provider = ScriptedLocationProvider(demo_route(), interval_seconds=args.sim_interval_seconds)
    return provider, InProcessScreenLock(), StaticConnectivity(True)


def _print_context(ctx: SessionContext) -> None:
    line = f"state={ctx.state.value}"
    if ctx.session_id:
        line += f" session={ctx.session_id}"
    if ctx.error:
        line += f" error={ctx.error}"
    print(line, flush=True)


def _print_diagnostics(prober: DiagnosticsProber) -> None:
    d = prober.last
    print(f"network={d.network.value} store={d.store.value} location={d.location.value}")
    if d.location_error:
        print(f"location_error={d.location_error}")
    if d.store_error:
        print(f"store_error={d.store_error}")


async def _diagnose(args: argparse.Namespace) -> int:
    cfg = config_from_args(args)
    store = JsonFileStore(args.store)
    provider, _, connectivity = _devices(args)
    prober = DiagnosticsProber(store, provider, connectivity, probe_timeout_seconds=cfg.probe_timeout_seconds)
    state = await prober.probe()
    _print_diagnostics(prober)
    return 0 if state.ready else 1


def _cmd_diagnose(args: argparse.Namespace) -> int:
    return asyncio.run(_diagnose(args))


async def _ride(args: argparse.Namespace) -> int:
    cfg = config_from_args(args)
    store = JsonFileStore(args.store)
    provider, screen_lock, connectivity = _devices(args)
    writer = TelemetryWriter(store)
    watcher = LocationWatcher(provider, writer, screen_lock=screen_lock, visibility=NullVisibility(), config=cfg)
    prober = DiagnosticsProber(store, provider, connectivity, probe_timeout_seconds=cfg.probe_timeout_seconds)
    controller = SessionController(
        store,
        prober,
        watcher,
        config=cfg,
        prefs=RiderPreferences(args.prefs),
        on_state_change=_print_context,
    )

    ctx = await controller.diagnose(controller.initial_context())
    _print_diagnostics(prober)
    ctx = await controller.go_online(ctx, args.name or "")
    if not ctx.online:
        return 1

    rider_id = ctx.rider.id if ctx.rider else ""
    session_id = ctx.session_id
    stopped = asyncio.Event()
    controller.on_state_change = lambda c: (_print_context(c), stopped.set())
    try:
        await asyncio.wait_for(stopped.wait(), timeout=args.duration if args.duration > 0 else None)
    except TimeoutError:
        pass
    finally:
        controller.on_state_change = _print_context
        await controller.go_offline(ctx)
        await writer.drain()
        await controller.drain()
        store.refresh()
        store.flush()

    points = [p for p in await _rider_points(store, rider_id) if p.session_id == session_id]
    print(f"written={writer.written} dropped={writer.dropped} heartbeat_fixes={watcher.heartbeat_fixes}")
    _print_summary(summarize(points), cfg.tz_name)
    return 0


def _cmd_ride(args: argparse.Namespace) -> int:
    try:
        return asyncio.run(_ride(args))
    except KeyboardInterrupt:
        print("interrupted, session closed", file=sys.stderr)
        return 0


# -- read side -------------------------------------------------------------


def _cmd_summarize(args: argparse.Namespace) -> int:
    store = JsonFileStore(args.store)
    window = _window_from_args(args)
    summary = summarize(asyncio.run(_rider_points(store, args.rider)), window)
    if args.json:
        print(json.dumps(asdict(summary), ensure_ascii=False, indent=2))
    else:
        _print_summary(summary, args.tz)
    return 0


def _cmd_history(args: argparse.Namespace) -> int:
    store = JsonFileStore(args.store)
    entries = asyncio.run(load_history(store, args.rider, limit=args.limit))
    if not entries:
        print(f"no sessions for rider {args.rider}")
        return 0
    for e in entries:
        s = e.session
        print(f"{_fmt_time(s.start_ms, args.tz)}  {s.status.value:<9}  {e.duration_label:<10}  {s.id}")
    return 0


def _cmd_riders(args: argparse.Namespace) -> int:
    store = JsonFileStore(args.store)
    for row in asyncio.run(list_riders(store)):
        print(f"{row.id:<24} {row.name:<24} last_active={_fmt_time(row.last_active_ms, args.tz)}")
    return 0


def _cmd_inspect(args: argparse.Namespace) -> int:
    if args.csv:
        points, _ = load_points_csv(args.csv)
    elif args.rider:
        points = asyncio.run(_rider_points(JsonFileStore(args.store), args.rider))
    else:
        print("inspect needs --rider or --csv", file=sys.stderr)
        return 2
    window = _window_from_args(args)
    if window is not None:
        points = [p for p in points if p.timestamp_ms is not None and window.contains(p.timestamp_ms)]
    res = inspect_points(points)

    print("### points")
    print(f"total={res.points_total}, valid={res.points_valid}, invalid={res.points_invalid}, sessions={res.sessions}")
    print()

    if res.min_time_ms is not None:
        print("### time range (local)")
        print(f"start={_fmt_time(res.min_time_ms, args.tz)}, end={_fmt_time(res.max_time_ms, args.tz)}")
        print()

    if res.delta is not None:
        print("### sampling interval (seconds)")
        print(
            f"count={res.delta.count}, min={res.delta.min_s:.3f}, median={res.delta.median_s:.3f}, "
            f"p95={res.delta.p95_s:.3f}, max={res.delta.max_s:.3f}"
        )
        print()

    gaps = res.gaps_over(args.gap_seconds)
    print(f"### gaps over {args.gap_seconds:.0f}s")
    for g in gaps[:20]:
        span = format_clock_duration(g.end_ms - g.start_ms)
        print(f"{_fmt_time(g.start_ms, args.tz)} -> {_fmt_time(g.end_ms, args.tz)} ({span})")
    if len(gaps) > 20:
        print(f"... {len(gaps) - 20} more")
    print()

    print("### bounding box")
    print(f"lat=[{res.min_lat}, {res.max_lat}], lng=[{res.min_lng}, {res.max_lng}]")
    print()

    print("### duplicate timestamps")
    print(res.duplicate_timestamps)

    if args.json:
        payload = asdict(res)
        payload.pop("times_ms")
        payload["gaps"] = [asdict(g) for g in gaps]
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def _cmd_export_csv(args: argparse.Namespace) -> int:
    store = JsonFileStore(args.store)
    points = asyncio.run(_rider_points(store, args.rider))
    window = _window_from_args(args)
    if window is not None:
        points = [p for p in points if p.timestamp_ms is not None and window.contains(p.timestamp_ms)]
    n = export_points_csv(points, args.out, args.tz)
    print(f"exported {n} points: {args.out}")
    return 0


def _cmd_watch(args: argparse.Namespace) -> int:
    store = JsonFileStore(args.store)
    view = RealtimeTripView(store, lambda s: _print_summary(s, args.tz))
    view.watch(args.rider, _window_from_args(args))
    polls = int(args.duration / args.poll_seconds) if args.duration > 0 else None
    try:
        while polls is None or polls > 0:
            sleep(args.poll_seconds)
            store.refresh()
            if polls is not None:
                polls -= 1
    except KeyboardInterrupt:
        pass
    finally:
        view.close()
    return 0


# -- parser ----------------------------------------------------------------


def _add_store_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--store", type=str, default=DEFAULT_STORE_PATH, help="store file (JSON snapshot + journal)")
    p.add_argument("--tz", type=str, default=DEFAULT_TZ, help="timezone (IANA), default Asia/Kolkata")


def _add_window_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--date", type=str, default=None, help="whole local day, e.g. 2025-06-01")
    p.add_argument("--range-start", type=str, default=None, help="only points at or after, e.g. 2025-06-01 09:00:00")
    p.add_argument("--range-end", type=str, default=None, help="only points at or before, e.g. 2025-06-01 18:00:00")


def _add_device_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--backend", choices=["simulated", "termux"], default="simulated", help="location backend")
    p.add_argument("--termux-provider", choices=["gps", "network", "passive"], default="gps")
    p.add_argument("--sim-interval-seconds", type=float, default=2.0, help="fix interval of the simulated route")


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""

    p = argparse.ArgumentParser(prog="trip_tracker")
    p.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = p.add_subparsers(dest="cmd", required=True)

    p_ride = sub.add_parser("ride", help="go on duty and record telemetry until stopped")
    p_ride.add_argument("--name", type=str, default=None, help="rider display name (default: last used)")
    p_ride.add_argument("--prefs", type=str, default=str(DEFAULT_PREFS_PATH), help="local preferences file")
    p_ride.add_argument("--duration", type=float, default=0.0, help="stop after N seconds (0 = until Ctrl-C)")
    _add_store_arguments(p_ride)
    _add_device_arguments(p_ride)
    add_config_arguments(p_ride)
    p_ride.set_defaults(func=_cmd_ride)

    p_diag = sub.add_parser("diagnose", help="check network, store and location readiness")
    _add_store_arguments(p_diag)
    _add_device_arguments(p_diag)
    add_config_arguments(p_diag)
    p_diag.set_defaults(func=_cmd_diagnose)

    p_sum = sub.add_parser("summarize", help="distance, speeds and duration for a rider")
    p_sum.add_argument("--rider", type=str, required=True, help="rider id, e.g. ravi_kumar")
    p_sum.add_argument("--json", action="store_true", help="print the summary as JSON")
    _add_store_arguments(p_sum)
    _add_window_arguments(p_sum)
    p_sum.set_defaults(func=_cmd_summarize)

    p_hist = sub.add_parser("history", help="recent sessions of a rider")
    p_hist.add_argument("--rider", type=str, required=True)
    p_hist.add_argument("--limit", type=int, default=20)
    _add_store_arguments(p_hist)
    p_hist.set_defaults(func=_cmd_history)

    p_riders = sub.add_parser("riders", help="list registered riders")
    _add_store_arguments(p_riders)
    p_riders.set_defaults(func=_cmd_riders)

    p_ins = sub.add_parser("inspect", help="coverage, sampling interval and gaps of telemetry")
    p_ins.add_argument("--rider", type=str, default=None)
    p_ins.add_argument("--csv", type=str, default=None, help="inspect an exported CSV instead of the store")
    p_ins.add_argument(
        "--gap-seconds",
        type=float,
        default=TrackerConfig().heartbeat_interval_seconds,
        help="report silences longer than this (default: heartbeat interval)",
    )
    p_ins.add_argument("--json", action="store_true", help="also print JSON")
    _add_store_arguments(p_ins)
    _add_window_arguments(p_ins)
    p_ins.set_defaults(func=_cmd_inspect)

    p_exp = sub.add_parser("export-csv", help="export a rider's telemetry with local times")
    p_exp.add_argument("--rider", type=str, required=True)
    p_exp.add_argument("--out", type=str, default="telemetry.csv")
    _add_store_arguments(p_exp)
    _add_window_arguments(p_exp)
    p_exp.set_defaults(func=_cmd_export_csv)

    p_watch = sub.add_parser("watch", help="print a live summary whenever new telemetry arrives")
    p_watch.add_argument("--rider", type=str, required=True)
    p_watch.add_argument("--poll-seconds", type=float, default=2.0, help="how often to reload the store file")
    p_watch.add_argument("--duration", type=float, default=0.0, help="stop after N seconds (0 = until Ctrl-C)")
    _add_store_arguments(p_watch)
    _add_window_arguments(p_watch)
    p_watch.set_defaults(func=_cmd_watch)

    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        return int(args.func(args))
    except ValueError as exc:
        # bad --tz / --date / --range-* values
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
