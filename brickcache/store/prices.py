"""Live minifig price snapshots and their append-only history."""
import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

import aiosqlite

from brickcache.config import config
from brickcache.parse.models import MinifigPriceSnapshot, PriceData, PriceHistoryEntry
from brickcache.store.schema import (
    chunked,
    dumps,
    from_db,
    initialize,
    loads,
    placeholders,
    to_db,
    utcnow,
)

logger = logging.getLogger(__name__)


def _snapshot_from_row(row: aiosqlite.Row) -> MinifigPriceSnapshot:
    return MinifigPriceSnapshot(
        minifig_id_rebrickable=row["minifig_id_rebrickable"],
        price_data=PriceData(**loads(row["price_data"], {})),
        is_expired=bool(row["is_expired"]),
        expires_at=from_db(row["expires_at"]),
        created_at=from_db(row["created_at"]),
        updated_at=from_db(row["updated_at"]),
    )


def _history_from_row(row: aiosqlite.Row) -> PriceHistoryEntry:
    return PriceHistoryEntry(
        id=row["id"],
        minifig_id_rebrickable=row["minifig_id_rebrickable"],
        price_data=PriceData(**loads(row["price_data"], {})),
        created_at=from_db(row["created_at"]),
        expires_at=from_db(row["expires_at"]),
    )


class PriceStore:
    """One snapshot row per minifig plus archived history rows."""

    def __init__(self, db_path: Path = config.DB_PATH):
        self.db_path = db_path

    async def initialize(self) -> None:
        await initialize(self.db_path)

    async def get_snapshot(self, minifig_id: str) -> Optional[MinifigPriceSnapshot]:
        snapshots = await self.get_snapshots([minifig_id])
        return snapshots.get(minifig_id)

    async def get_snapshots(self, minifig_ids: Iterable[str]) -> dict[str, MinifigPriceSnapshot]:
        ids = list(dict.fromkeys(minifig_ids))
        found: dict[str, MinifigPriceSnapshot] = {}
        if not ids:
            return found
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            for chunk in chunked(ids):
                cursor = await db.execute(
                    f"SELECT * FROM minifig_price WHERE minifig_id_rebrickable IN ({placeholders(chunk)})",
                    chunk,
                )
                for row in await cursor.fetchall():
                    found[row["minifig_id_rebrickable"]] = _snapshot_from_row(row)
        return found

    async def upsert_snapshot(self, snapshot: MinifigPriceSnapshot) -> None:
        """Write the live snapshot; the original creation time is kept."""
        now = snapshot.updated_at or utcnow()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO minifig_price
                    (minifig_id_rebrickable, price_data, is_expired, expires_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(minifig_id_rebrickable) DO UPDATE SET
                    price_data = excluded.price_data,
                    is_expired = excluded.is_expired,
                    expires_at = excluded.expires_at,
                    updated_at = excluded.updated_at
                """,
                (
                    snapshot.minifig_id_rebrickable,
                    dumps(snapshot.price_data.model_dump()),
                    int(snapshot.is_expired),
                    to_db(snapshot.expires_at),
                    to_db(snapshot.created_at or now),
                    to_db(now),
                ),
            )
            await db.commit()

    async def mark_expired(self, minifig_id: str) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "UPDATE minifig_price SET is_expired = 1 WHERE minifig_id_rebrickable = ?",
                (minifig_id,),
            )
            await db.commit()

    async def list_expired(self, now: datetime) -> list[str]:
        """Minifig ids whose snapshot is flagged expired or past expires_at."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                SELECT minifig_id_rebrickable FROM minifig_price
                WHERE is_expired = 1 OR expires_at <= ?
                ORDER BY expires_at
                """,
                (to_db(now),),
            )
            return [row[0] for row in await cursor.fetchall()]

    async def latest_history(self, minifig_id: str) -> Optional[PriceHistoryEntry]:
        history = await self.get_history(minifig_id, limit=1)
        return history[0] if history else None

    async def get_history(self, minifig_id: str, limit: int = 50) -> list[PriceHistoryEntry]:
        """History rows, newest first."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT * FROM minifig_price_history
                WHERE minifig_id_rebrickable = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (minifig_id, limit),
            )
            return [_history_from_row(row) for row in await cursor.fetchall()]

    async def append_history(self, entry: PriceHistoryEntry) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO minifig_price_history
                    (minifig_id_rebrickable, price_data, created_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    entry.minifig_id_rebrickable,
                    dumps(entry.price_data.model_dump()),
                    to_db(entry.created_at),
                    to_db(entry.expires_at),
                ),
            )
            await db.commit()
            return cursor.lastrowid

    async def count_expired_history(self, now: datetime) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM minifig_price_history WHERE expires_at <= ?",
                (to_db(now),),
            )
            row = await cursor.fetchone()
            return row[0]

    async def purge_expired_history(self, now: datetime) -> int:
        """Hard-delete history rows past their expiry. Returns the number removed."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM minifig_price_history WHERE expires_at <= ?",
                (to_db(now),),
            )
            await db.commit()
            deleted = cursor.rowcount
        logger.info(f"Purged {deleted} expired price history rows")
        return deleted
