from __future__ import annotations

import argparse
import asyncio
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Final

from zoneinfo import ZoneInfo

from trip_tracker.models import SESSIONS, TELEMETRY, USERS, Rider, SessionStatus
from trip_tracker.store import SERVER_TIMESTAMP, JsonFileStore

TZ: Final[str] = "Asia/Kolkata"


@dataclass(frozen=True, slots=True)
class Depot:
    name: str
    lat: float
    lng: float


class _Clock:
    """Store clock the generator moves forward by hand."""

    def __init__(self, start_ms: int) -> None:
        self.ms = start_ms

    def __call__(self) -> int:
        return self.ms

    def advance(self, seconds: float) -> None:
        self.ms += int(seconds * 1000)


async def generate(
    store: JsonFileStore,
    clock: _Clock,
    *,
    riders: list[str],
    days: int,
    seed: int,
    depots: list[Depot],
) -> int:
    """Fill `store` with riders, completed sessions and their telemetry.

    The last session of the last rider is left active (an orphan).
    """

    rng = random.Random(seed)
    day0 = clock.ms
    written = 0
    for r_idx, name in enumerate(riders):
        rider = Rider.from_name(name)
        for day in range(days):
            clock.ms = day0 + day * 86_400_000 + int(rng.uniform(0, 3600) * 1000)
            await store.upsert(
                USERS, rider.id, {"name": rider.display_name, "last_active": SERVER_TIMESTAMP, "type": "rider"}
            )
            depot = rng.choice(depots)
            doc_id = await store.insert(
                SESSIONS,
                {
                    "rider_id": rider.id,
                    "rider_name": rider.display_name,
                    "start_time": SERVER_TIMESTAMP,
                    "status": SessionStatus.ACTIVE.value,
                },
            )
            session_id = f"sess_{clock.ms}"
            lat, lng = depot.lat, depot.lng
            heading = rng.uniform(0, 360)
            for _ in range(rng.randint(40, 160)):
                # mostly the 30 s heartbeat cadence, sometimes a short burst or a tunnel
                clock.advance(rng.choice([5.0, 10.0, 30.0, 30.0, 30.0, 95.0]))
                heading += rng.uniform(-25, 25)
                speed = max(0.0, rng.gauss(7.0, 3.0))
                step = speed * 30 / 111_000
                lat += step * rng.uniform(0.3, 1.0) * (1 if heading % 360 < 180 else -1)
                lng += step * rng.uniform(0.3, 1.0) * (1 if (heading + 90) % 360 < 180 else -1)
                await store.insert(
                    TELEMETRY,
                    {
                        "session_id": session_id,
                        "session_doc_id": doc_id,
                        "rider_id": rider.id,
                        "rider_name": rider.display_name,
                        "location": {"lat": round(lat, 7), "lng": round(lng, 7)},
                        "speed": round(speed, 2) if rng.random() > 0.05 else None,
                        "accuracy": rng.choice([3.0, 5.0, 8.0, 12.0, 20.0]),
                        "client_time": clock.ms,
                        "timestamp": SERVER_TIMESTAMP,
                    },
                )
                written += 1
            orphan = r_idx == len(riders) - 1 and day == days - 1
            if not orphan:
                await store.update(
                    SESSIONS, doc_id, {"end_time": SERVER_TIMESTAMP, "status": SessionStatus.COMPLETED.value}
                )
    return written


def main() -> int:
    p = argparse.ArgumentParser(description="Generate a fake tracker store for demo/testing (privacy-safe).")
    p.add_argument("--out", type=str, default="sample_data/tracker_store.json", help="Output store path")
    p.add_argument("--riders", type=str, nargs="+", default=["Ravi Kumar", "Anita Rao", "Suresh P"])
    p.add_argument("--days", type=int, default=3, help="Days of sessions per rider")
    p.add_argument("--seed", type=int, default=42, help="Random seed (reproducible)")
    p.add_argument(
        "--start",
        type=str,
        default="2025-01-06 09:00:00",
        help="Start local time in Asia/Kolkata, e.g. '2025-01-06 09:00:00'",
    )
    p.add_argument("--force", action="store_true", help="overwrite an existing store")
    args = p.parse_args()

    out_path = Path(args.out)
    journal = out_path.with_name(f"{out_path.stem}.journal.jsonl")
    if out_path.exists() or journal.exists():
        if not args.force:
            print(f"{out_path} already exists; pass --force to overwrite")
            return 1
        for f in (out_path, journal):
            f.unlink(missing_ok=True)

    start_local = datetime.fromisoformat(args.start).replace(tzinfo=ZoneInfo(TZ))
    clock = _Clock(int(start_local.timestamp() * 1000))
    store = JsonFileStore(out_path, clock=clock)
    depots = [
        Depot("mg_road", 12.9756, 77.6050),
        Depot("koramangala", 12.9352, 77.6245),
        Depot("whitefield", 12.9698, 77.7500),
    ]
    n = asyncio.run(generate(store, clock, riders=args.riders, days=args.days, seed=args.seed, depots=depots))
    store.flush()
    print(f"Generated: {out_path} (riders={len(args.riders)}, days={args.days}, points={n}, seed={args.seed})")
    first = Rider.from_name(args.riders[0]).id
    print(f"Try: python -m trip_tracker summarize --store {out_path} --rider {first} --date {start_local.date()}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
