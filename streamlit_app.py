from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path

import streamlit as st

from trip_tracker.analytics import summarize
from trip_tracker.config import DEFAULT_STORE_PATH
from trip_tracker.history import HistoryEntry, RiderRow, list_riders, load_history
from trip_tracker.models import DEFAULT_TZ, TELEMETRY, TelemetryPoint, TimeWindow, point_from_record
from trip_tracker.store import JsonFileStore
from trip_tracker.timeutils import dt_from_epoch_ms, tzinfo_from_name


def _store_mtime(path: Path) -> float:
    """Latest change of the snapshot or its journal (cache key)."""

    journal = path.with_name(f"{path.stem}.journal.jsonl")
    return max((p.stat().st_mtime for p in (path, journal) if p.exists()), default=0.0)


async def _read(
    store_path: str, rider_id: str | None
) -> tuple[list[RiderRow], list[TelemetryPoint], list[HistoryEntry]]:
    store = JsonFileStore(store_path)
    riders = await list_riders(store)
    if rider_id is None:
        return riders, [], []
    records = await store.query(TELEMETRY, {"rider_id": rider_id})
    history = await load_history(store, rider_id, limit=20)
    return riders, [point_from_record(r) for r in records], history


@st.cache_data(show_spinner=False)
def _load(store_path: str, rider_id: str | None, mtime: float):
    _ = mtime  # part of cache key so new telemetry reloads automatically
    return asyncio.run(_read(store_path, rider_id))


def _fmt(epoch_ms: int | None, tz_name: str) -> str:
    return "" if epoch_ms is None else dt_from_epoch_ms(epoch_ms, tz_name).isoformat(sep=" ", timespec="seconds")


def main() -> None:
    st.set_page_config(page_title="Trip tracker: rider telemetry", layout="wide")
    st.title("Trip tracker: daily rider summary")

    with st.sidebar:
        st.subheader("Data and timezone")
        tz_name = st.text_input("Timezone (IANA)", value=DEFAULT_TZ)
        store_path = st.text_input("Store file", value=DEFAULT_STORE_PATH)
        p = Path(store_path)
        if not p.exists() and not p.with_name(f"{p.stem}.journal.jsonl").exists():
            st.error(f"Store not found: {store_path!r}. Run `python -m trip_tracker ride` first.")
            return

        riders, _, _ = _load(store_path, None, _store_mtime(p))
        if not riders:
            st.warning("No riders registered yet.")
            return
        labels = {r.id: f"{r.name} ({r.id})" for r in riders}
        rider_id = st.selectbox("Rider", options=list(labels), format_func=labels.__getitem__)

        today = datetime.now(tzinfo_from_name(tz_name)).date()
        day = st.date_input("Day", value=today)
        if st.button("Refresh", use_container_width=True):
            _load.clear()

    try:
        window = TimeWindow.for_day(day, tz_name)
        _, points, history = _load(store_path, rider_id, _store_mtime(p))
    except ValueError as exc:
        st.error(str(exc))
        return

    summary = summarize(points, window)

    st.subheader("Summary")
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Distance", f"{summary.distance_km:.2f} km")
    c2.metric("Avg speed", f"{summary.avg_speed_kmh:.1f} km/h")
    c3.metric("Max speed", f"{summary.max_speed_kmh:.1f} km/h")
    c4.metric("Duration", summary.duration_label)

    st.subheader("Route")
    if summary.ordered_path:
        st.map(
            {"lat": [lat for lat, _ in summary.ordered_path], "lon": [lng for _, lng in summary.ordered_path]},
            use_container_width=True,
        )
        st.caption(
            f"{summary.point_count} points, {_fmt(summary.start_ms, tz_name)} to {_fmt(summary.end_ms, tz_name)}"
        )
    else:
        st.info("No telemetry for this rider on the selected day.")

    st.subheader("Recent sessions")
    st.dataframe(
        [
            {
                "start": _fmt(e.session.start_ms, tz_name),
                "end": _fmt(e.session.end_ms, tz_name),
                "status": e.session.status.value,
                "duration": e.duration_label,
                "session": e.session.id,
            }
            for e in history
        ],
        use_container_width=True,
    )

    with st.expander("All riders", expanded=False):
        st.dataframe(
            [{"id": r.id, "name": r.name, "last_active": _fmt(r.last_active_ms, tz_name)} for r in riders],
            use_container_width=True,
        )

    st.caption("Times are shown in the selected timezone; the day runs from 00:00:00.000 to 23:59:59.999.")


if __name__ == "__main__":
    main()
