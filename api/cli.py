#!/usr/bin/env python3
"""
Wind cache CLI tool.

Command-line interface for administrative tasks:
- Duplicate history cleanup
- History inspection
- One-off fetch cycles (without the API server)
- Health checks

Usage:
    python -m api.cli cleanup-duplicates
    python -m api.cli cleanup-duplicates --key wind:points
    python -m api.cli list-indices --key precipitation:points
    python -m api.cli fetch-history
    python -m api.cli fetch-latest
    python -m api.cli check-health --url http://localhost:3000
"""
import argparse
import asyncio
import logging
import sys
from typing import Dict, List, Sequence

from api.cache import CacheStore
from api.config import Settings, get_settings
from api.resilience import wait_for_cache
from api.scheduler import (
    PRECIPITATION_POINTS_KEY,
    WIND_METADATA_KEY,
    WIND_PNG_KEY,
    WIND_POINTS_KEY,
    Scheduler,
)
from windcache.data.opendap import GFSOpenDAPProvider
from windcache.errors import CacheBackendError

INDEXED_KEYS = (WIND_POINTS_KEY, PRECIPITATION_POINTS_KEY)

# Per-index companions written next to each wind:points version
COMPANION_KEYS = {WIND_POINTS_KEY: (WIND_PNG_KEY, WIND_METADATA_KEY)}


def _open_store(cfg: Settings) -> CacheStore:
    return CacheStore.from_url(
        cfg.redis_url,
        ttl_seconds=cfg.cache_ttl,
        max_payload_bytes=cfg.cache_max_payload_bytes,
        max_history=cfg.cache_max_history,
    )


async def cleanup_duplicates(store: CacheStore, keys: Sequence[str]) -> Dict[str, int]:
    """Collapse near-duplicate history entries for each key; returns removed counts."""
    removed = {}
    for key in keys:
        before = len(await store.list_indices(key))
        dropped = await store.remove_duplicate_entries(key, COMPANION_KEYS.get(key, ()))
        removed[key] = len(dropped)
        print(f"\n{key}: {before} entries, removed {len(dropped)} duplicate(s)")
        for entry in dropped:
            print(f"  - index {entry.index} ({entry.data_time})")
    return removed


async def list_indices(store: CacheStore, key: str) -> List[dict]:
    entries = await store.list_indices(key)
    if not entries:
        print(f"\nNo indices found for {key}.")
        return []

    print("\n" + "=" * 96)
    print(f"HISTORY: {key}")
    print("=" * 96)
    print(f"{'Index':<7} {'Data time':<34} {'Run':<14} {'Offset':<8} {'Points':<9} {'Stored':<24}")
    print("-" * 96)
    for e in entries:
        offset = f"f+{e.forecast_offset}" if e.forecast_offset is not None else "-"
        print(
            f"{e.index:<7} "
            f"{(e.data_time or '-'):<34} "
            f"{(e.run_name or '-'):<14} "
            f"{offset:<8} "
            f"{e.data_points:<9} "
            f"{e.timestamp[:23]:<24}"
        )
    print("=" * 96)
    print(f"Total: {len(entries)} entr{'y' if len(entries) == 1 else 'ies'}\n")
    return [e.to_dict() for e in entries]


async def run_fetch(cfg: Settings, latest_only: bool) -> bool:
    """Run one fetch cycle directly against Redis and NOMADS."""
    store = _open_store(cfg)
    provider = GFSOpenDAPProvider(
        base_url=cfg.opendap_base_url,
        timeout=cfg.upstream_timeout,
        user_agent=cfg.upstream_user_agent,
    )
    scheduler = Scheduler(
        store,
        provider,
        max_history=cfg.cache_max_history,
        fetch_delay_seconds=cfg.scheduler_fetch_delay_seconds,
    )
    try:
        await wait_for_cache(store, max_attempts=cfg.cache_connect_attempts)
        if latest_only:
            return await scheduler.fetch_latest_forecast()
        return await scheduler.fetch_historical_24h()
    finally:
        await provider.close()
        await store.close()


async def _with_store(cfg: Settings, func, *args):
    store = _open_store(cfg)
    try:
        await wait_for_cache(store, max_attempts=cfg.cache_connect_attempts)
        return await func(store, *args)
    finally:
        await store.close()


def check_health(url: str) -> None:
    """Check API health."""
    import requests

    try:
        response = requests.get(f"{url.rstrip('/')}/api/health", timeout=5)
    except requests.exceptions.ConnectionError:
        print("\nError: Could not connect to API. Is the server running?")
        sys.exit(1)

    data = response.json() if response.content else {}
    print(f"\nAPI Status: {data.get('status', 'unknown')} (HTTP {response.status_code})")
    print(f"Version: {data.get('version', 'unknown')}")
    for name, component in data.get("components", {}).items():
        print(f"  {name}: {component.get('status')} - {component.get('message')}")
    if response.status_code != 200 or data.get("status") == "unhealthy":
        sys.exit(1)


def main(argv=None):
    cfg = get_settings()
    parser = argparse.ArgumentParser(
        description="Wind cache CLI tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Remove duplicate history entries (wind and precipitation):
    python -m api.cli cleanup-duplicates

  Show the cached wind history:
    python -m api.cli list-indices --key wind:points

  Fetch the last 24h without starting the server:
    python -m api.cli fetch-history

  Check API health:
    python -m api.cli check-health
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    cleanup_parser = subparsers.add_parser(
        "cleanup-duplicates", help="Remove history entries within 2h of each other"
    )
    cleanup_parser.add_argument(
        "--key",
        action="append",
        choices=INDEXED_KEYS,
        help="Indexed key to clean (repeatable, default: all)",
    )

    list_parser = subparsers.add_parser("list-indices", help="List cached history entries")
    list_parser.add_argument("--key", required=True, choices=INDEXED_KEYS)

    subparsers.add_parser("fetch-history", help="Run the 24h historical fetch once")
    subparsers.add_parser("fetch-latest", help="Run the latest-forecast check once")

    health_parser = subparsers.add_parser("check-health", help="Check API health")
    health_parser.add_argument(
        "--url",
        default=f"http://localhost:{cfg.api_port}",
        help="API base URL",
    )

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    try:
        if args.command == "cleanup-duplicates":
            asyncio.run(_with_store(cfg, cleanup_duplicates, args.key or list(INDEXED_KEYS)))
        elif args.command == "list-indices":
            asyncio.run(_with_store(cfg, list_indices, args.key))
        elif args.command == "fetch-history":
            if not asyncio.run(run_fetch(cfg, latest_only=False)):
                sys.exit(1)
        elif args.command == "fetch-latest":
            if not asyncio.run(run_fetch(cfg, latest_only=True)):
                sys.exit(1)
        elif args.command == "check-health":
            check_health(args.url)
        else:
            parser.print_help()
            sys.exit(1)
    except CacheBackendError as e:
        print(f"\nError: Redis unavailable: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
