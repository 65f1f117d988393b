#!/usr/bin/env python3
"""
Warm the listings cache for hot listing IDs.

Runs the same warm pass the service performs at startup, but can be executed
manually from a developer workstation or CI job after a deploy or a Redis
flush. Connection settings come from the LISTINGS_* environment unless
overridden on the command line.
"""

import argparse
import asyncio
import json
from pathlib import Path
from typing import Optional
import sys

from service_listings.app.main import create_service


async def warm(
    *,
    redis_url: Optional[str],
    postgres_dsn: Optional[str],
    hot_keys_path: Optional[Path],
    concurrency: Optional[int],
    limit: Optional[int],
    include_stats: bool,
) -> dict:
    """Start the service, warm hot keys and return the summary."""
    overrides = {
        "redis_url": redis_url,
        "postgres_dsn": postgres_dsn,
        "hot_keys_path": str(hot_keys_path) if hot_keys_path else None,
        "warm_concurrency": concurrency,
    }
    if hot_keys_path:
        overrides["guard_mode"] = "listed"
    service = create_service(**{key: value for key, value in overrides.items() if value is not None})

    listings = await service.start(warm=False)
    try:
        summary = await listings.warm_hot_keys(limit)
        if include_stats:
            summary["stats"] = await listings.get_cache_stats()
    finally:
        await service.stop()
    return summary


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Warm the Redis listings cache for hot listing IDs.")
    parser.add_argument("--redis-url", default=None, help="Redis connection URL")
    parser.add_argument("--postgres-dsn", default=None, help="Listings database DSN")
    parser.add_argument("--hot-keys-file", type=Path, default=None, help="Path to hot listings JSON")
    parser.add_argument("--concurrency", type=int, default=None, help="Concurrent warm operations")
    parser.add_argument("--limit", type=int, default=None, help="Warm at most this many keys")
    parser.add_argument("--stats", action="store_true", help="Include filter and cache stats in the summary")
    parser.add_argument("--output", type=Path, default=None, help="Optional path to write JSON summary")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    try:
        summary = asyncio.run(
            warm(
                redis_url=args.redis_url,
                postgres_dsn=args.postgres_dsn,
                hot_keys_path=args.hot_keys_file,
                concurrency=args.concurrency,
                limit=args.limit,
                include_stats=args.stats,
            )
        )
    except KeyboardInterrupt:
        return 130
    except Exception as exc:
        print(f"[cache-warm] failed: {exc}", file=sys.stderr)
        return 1

    rendered = json.dumps(summary, indent=2, default=str)
    print(rendered)

    if args.output:
        args.output.write_text(rendered)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
