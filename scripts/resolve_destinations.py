"""
Resolve every destination in a CSV from one origin and write the results next to it.

Usage (from the repository root):
    python scripts/resolve_destinations.py destinations_generated.csv -37.8136 144.9631

Reads ORS_API_KEY and friends from the environment / .env. Without a key every
row comes back as a straight-line estimate.
"""

import argparse
import asyncio
import logging
import sys
from typing import Dict, List

import pandas as pd

from batching import BatchScheduler, Destination, bulk_policy
from routing import Coordinate, Profile, RouteResult, build_engine, load_config
from routing.config import configure_logging
from routing.storage import FileKeyValueStore


def load_destinations(df: pd.DataFrame) -> Dict[Profile, List[Destination]]:
    by_profile: Dict[Profile, List[Destination]] = {}
    for _, row in df.iterrows():
        raw_profile = row.get("profile")
        # blank cells come back from pandas as NaN
        profile = Profile(raw_profile) if isinstance(raw_profile, str) and raw_profile else Profile.DRIVING
        by_profile.setdefault(profile, []).append(
            Destination(
                id=str(row["destination_id"]),
                coordinate=Coordinate(latitude=float(row["lat"]), longitude=float(row["lon"])),
            )
        )
    return by_profile


def results_frame(results: Dict[str, RouteResult]) -> pd.DataFrame:
    rows = []
    for destination_id, result in results.items():
        rows.append({
            "destination_id": destination_id,
            "distance_km": round(result.distance_km, 3),
            "duration_min": round(result.duration_min, 1),
            "method": result.method.value,
            "is_estimate": result.is_estimate,
        })
    return pd.DataFrame(rows)


async def run(input_file: str, origin: Coordinate, output_file: str, cache_dir: str) -> pd.DataFrame:
    config = load_config()
    configure_logging(config)

    store = FileKeyValueStore(cache_dir) if cache_dir else None
    policy = build_engine(config, store=store)
    scheduler = BatchScheduler(policy, batch_policy=bulk_policy())

    df = pd.read_csv(input_file)
    results: Dict[str, RouteResult] = {}
    try:
        for profile, destinations in load_destinations(df).items():
            results.update(await scheduler.resolve_many(origin, destinations, profile=profile))
    finally:
        if policy.client is not None:
            await policy.client.aclose()

    out = df.merge(results_frame(results), on="destination_id", how="left")
    out.to_csv(output_file, index=False)

    print(f"\n--- Resolution Results ---")
    print(f"Total destinations: {len(out)}")
    print(out["method"].value_counts().to_string())
    print(f"Mean distance: {out['distance_km'].mean():.2f} km")
    print(f"Saved to '{output_file}'")
    return out


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("input_file")
    parser.add_argument("origin_lat", type=float)
    parser.add_argument("origin_lon", type=float)
    parser.add_argument("--output", default="destinations_resolved.csv")
    parser.add_argument("--cache-dir", default=".route_cache")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    origin = Coordinate(latitude=args.origin_lat, longitude=args.origin_lon)
    asyncio.run(run(args.input_file, origin, args.output, args.cache_dir))
    return 0


if __name__ == "__main__":
    sys.exit(main())
