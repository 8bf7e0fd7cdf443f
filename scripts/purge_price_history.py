#!/usr/bin/env python3
"""Utility script to delete price history rows past their expiry."""
import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from brickcache.config import config
from brickcache.store.prices import PriceStore
from brickcache.store.schema import utcnow


async def purge(db_path: Path, dry_run: bool) -> int:
    """Delete (or just count) expired history rows."""
    store = PriceStore(db_path)
    await store.initialize()
    now = utcnow()

    if dry_run:
        count = await store.count_expired_history(now)
        print(f"[dry-run] {count} expired price history rows would be deleted")
        return count

    deleted = await store.purge_expired_history(now)
    print(f"Deleted {deleted} expired price history rows")
    return deleted


def main() -> None:
    parser = argparse.ArgumentParser(description="Purge expired minifig price history")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only count the rows that would be deleted",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=config.DB_PATH,
        help=f"Cache database (default: {config.DB_PATH})",
    )
    args = parser.parse_args()

    if not args.db.exists():
        print(f"Database not found: {args.db}")
        sys.exit(1)

    asyncio.run(purge(args.db, args.dry_run))


if __name__ == "__main__":
    main()
