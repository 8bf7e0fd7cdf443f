"""SQLite schema, timestamp and JSON column helpers."""
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

import aiosqlite
import orjson

logger = logging.getLogger(__name__)

# Fixed width so that string comparison in SQL matches time order
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# Keep IN (...) lists under SQLite's host parameter limit
MAX_IN_PARAMS = 500

TABLES = [
    """
    CREATE TABLE IF NOT EXISTS part_metadata (
        element_id TEXT PRIMARY KEY,
        element_name TEXT,
        invalid INTEGER NOT NULL DEFAULT 0,
        cache_incomplete INTEGER NOT NULL DEFAULT 0,
        available_colors TEXT NOT NULL DEFAULT '[]',
        expires_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS minifig_metadata (
        minifig_id_rebrickable TEXT PRIMARY KEY,
        minifig_name TEXT,
        minifig_image TEXT,
        minifig_id_bricklink TEXT,
        expires_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS minifig_price (
        minifig_id_rebrickable TEXT PRIMARY KEY,
        price_data TEXT NOT NULL,
        is_expired INTEGER NOT NULL DEFAULT 0,
        expires_at TEXT NOT NULL,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS minifig_price_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        minifig_id_rebrickable TEXT NOT NULL,
        price_data TEXT NOT NULL,
        created_at TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_bricks (
        uuid TEXT PRIMARY KEY,
        element_id TEXT NOT NULL,
        element_color_id TEXT,
        element_color TEXT,
        quantity_on_hand INTEGER NOT NULL DEFAULT 0,
        quantity_required INTEGER NOT NULL DEFAULT 0,
        count_complete INTEGER NOT NULL DEFAULT 0,
        highlighted INTEGER NOT NULL DEFAULT 0,
        invalid INTEGER NOT NULL DEFAULT 0,
        table_id TEXT NOT NULL,
        owner_id TEXT NOT NULL,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_minifigs (
        uuid TEXT PRIMARY KEY,
        minifig_id_rebrickable TEXT NOT NULL,
        minifig_id_bricklink TEXT,
        quantity_on_hand INTEGER NOT NULL DEFAULT 0,
        quantity_required INTEGER NOT NULL DEFAULT 0,
        count_complete INTEGER NOT NULL DEFAULT 0,
        highlighted INTEGER NOT NULL DEFAULT 0,
        invalid INTEGER NOT NULL DEFAULT 0,
        table_id TEXT NOT NULL,
        owner_id TEXT NOT NULL,
        created_at TEXT
    )
    """,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_history_minifig ON minifig_price_history(minifig_id_rebrickable, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_history_expires ON minifig_price_history(expires_at)",
    "CREATE INDEX IF NOT EXISTS idx_price_expires ON minifig_price(expires_at)",
    "CREATE INDEX IF NOT EXISTS idx_bricks_table ON user_bricks(table_id, owner_id)",
    "CREATE INDEX IF NOT EXISTS idx_bricks_element ON user_bricks(element_id)",
    "CREATE INDEX IF NOT EXISTS idx_minifigs_table ON user_minifigs(table_id, owner_id)",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def after(now: datetime, seconds: float) -> datetime:
    return now + timedelta(seconds=seconds)


def to_db(value: Optional[datetime]) -> Optional[str]:
    """Format an aware (or naive UTC) datetime for storage."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def from_db(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def dumps(value: Any) -> str:
    return orjson.dumps(value).decode()


def loads(value: Optional[str], default: Any = None) -> Any:
    if not value:
        return default
    return orjson.loads(value)


def chunked(items: list, size: int = MAX_IN_PARAMS) -> Iterator[list]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def placeholders(values: Iterable) -> str:
    return ", ".join("?" for _ in values)


async def initialize(db_path: Path) -> None:
    """Create tables and indexes if they don't exist."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        for statement in TABLES + INDEXES:
            await db.execute(statement)
        await db.commit()
    logger.info(f"Cache database initialized at {db_path}")
