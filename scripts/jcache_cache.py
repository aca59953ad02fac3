"""
CLI utility for cache management.

Usage:
    jcache-cache --stats
    jcache-cache --keys
    jcache-cache --gc
    jcache-cache --print user:42
    jcache-cache --download https://example.org/report.pdf --expiry-seconds 3600
    jcache-cache --clear
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from jcache.config import CacheConfig
from jcache.download import DownloadController, DownloadEvent, DownloadStatus
from jcache.errors import EncryptionSeedError
from jcache.persist import CacheStore


def format_bytes(bytes_val: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "KB", "MB", "GB"]:
        if bytes_val < 1024:
            return f"{bytes_val:.1f} {unit}"
        bytes_val /= 1024
    return f"{bytes_val:.1f} TB"


def format_time(ts: int) -> str:
    """Format unix timestamp as human-readable string."""
    if ts == 0:
        return "never"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}',
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def show_stats(store: CacheStore) -> int:
    stats = store.stats()
    print(f"📊 Cache Statistics: {stats['db_path']}\n")
    print(f"{'Records':<10} {'Size':>12} {'Oldest':>20} {'Newest':>20}")
    print("=" * 65)
    print(
        f"{stats['count']:<10,} {format_bytes(stats['total_bytes']):>12} "
        f"{format_time(stats['oldest_ts']):>20} {format_time(stats['newest_ts']):>20}"
    )
    print()
    return 0


def show_keys(store: CacheStore) -> int:
    keys = store.get_keys()
    print(f"🔑 {len(keys)} keys\n")
    for key in sorted(keys):
        print(f"   {key}")
    return 0


def run_gc(store: CacheStore) -> int:
    removed = store.garbage_collector()
    print(f"🧹 Garbage collection removed {removed:,} expired records")
    return 0


def clear_cache(store: CacheStore) -> int:
    cleared = store.clear()
    print(f"🗑️  Cleared {cleared:,} records")
    print("\n✅ Cache clear complete")
    return 0


def print_record(store: CacheStore, key: str) -> int:
    record = store.print_record(key)
    if record is None:
        print(f"❌ No readable record for key: {key}")
        return 1
    return 0


def render_event(event: DownloadEvent) -> None:
    """Print one console line per download event."""
    if event.status is DownloadStatus.DOWNLOADING:
        if event.content_length:
            print(f"⬇️  {event.progress:6.1%} of {format_bytes(event.content_length)}", end="\r", flush=True)
        else:
            print("⬇️  downloading (size unknown)", end="\r", flush=True)
    elif event.status is DownloadStatus.COMPLETED:
        print(f"\n✅ Saved to {event.resource_path} ({format_bytes(event.content_length)})")
    elif event.status is DownloadStatus.ERROR:
        print(f"\n❌ {event.error}")
    elif event.status is DownloadStatus.CANCELLED:
        print(f"\n⏹️  Cancelled at {event.progress:.1%}")
    else:
        print(f"⏳ {event.resource_url or 'waiting'}")


async def download(store: CacheStore, url: str, expiry: Optional[timedelta]) -> int:
    controller = DownloadController(store)
    controller.progress_stream.listen(render_event)
    try:
        path = await controller.start(url, expiry)
    finally:
        await controller.dispose()
    return 0 if path else 1


def main():
    """CLI entrypoint."""
    parser = argparse.ArgumentParser(
        description="Manage the jcache store (stats, keys, gc, downloads)"
    )
    parser.add_argument("--stats", action="store_true", help="Show cache statistics")
    parser.add_argument("--keys", action="store_true", help="List original keys")
    parser.add_argument("--gc", action="store_true", help="Delete expired records now")
    parser.add_argument("--clear", action="store_true", help="Delete every record")
    parser.add_argument("--print", dest="print_key", metavar="KEY", help="Dump one record")
    parser.add_argument("--download", metavar="URL", help="Download URL into the file cache")
    parser.add_argument(
        "--expiry-seconds",
        type=float,
        default=None,
        help="Time-to-live for --download (default: store default)",
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Cache directory (default: $JCACHE_DIR or ~/.jcache)",
    )
    parser.add_argument("--name", default=None, help="Cache name (default: $JCACHE_NAME or jcache-records)")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    if not any([args.stats, args.keys, args.gc, args.clear, args.print_key, args.download]):
        parser.print_help()
        print("\n❌ Error: Must specify at least one action")
        sys.exit(1)

    if args.expiry_seconds is not None and args.expiry_seconds < 0:
        print("❌ Error: --expiry-seconds must be non-negative")
        sys.exit(1)

    configure_logging(args.verbose)

    config = CacheConfig.from_env(cache_dir=args.cache_dir, cache_name=args.name)
    exit_code = 0

    try:
        store = CacheStore(config).init()
    except EncryptionSeedError as e:
        print(f"❌ Error: {e}")
        sys.exit(1)

    with store:
        if args.download:
            expiry = timedelta(seconds=args.expiry_seconds) if args.expiry_seconds is not None else None
            exit_code = asyncio.run(download(store, args.download, expiry)) or exit_code
        if args.print_key:
            exit_code = print_record(store, args.print_key) or exit_code
        if args.keys:
            exit_code = show_keys(store) or exit_code
        if args.gc:
            exit_code = run_gc(store) or exit_code
        if args.clear:
            exit_code = clear_cache(store) or exit_code
        if args.stats:
            exit_code = show_stats(store) or exit_code

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
