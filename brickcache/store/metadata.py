"""Persistent cache of shared part and minifig metadata."""
import logging
from pathlib import Path
from typing import Iterable, Optional

import aiosqlite

from brickcache.config import config
from brickcache.parse.models import ColorEntry, MinifigMetadata, PartMetadata
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


def _part_from_row(row: aiosqlite.Row) -> PartMetadata:
    return PartMetadata(
        element_id=row["element_id"],
        element_name=row["element_name"],
        invalid=bool(row["invalid"]),
        cache_incomplete=bool(row["cache_incomplete"]),
        available_colors=[ColorEntry(**color) for color in loads(row["available_colors"], [])],
        expires_at=from_db(row["expires_at"]),
        updated_at=from_db(row["updated_at"]),
    )


def _minifig_from_row(row: aiosqlite.Row) -> MinifigMetadata:
    return MinifigMetadata(
        minifig_id_rebrickable=row["minifig_id_rebrickable"],
        minifig_name=row["minifig_name"],
        minifig_image=row["minifig_image"],
        minifig_id_bricklink=row["minifig_id_bricklink"],
        expires_at=from_db(row["expires_at"]),
        updated_at=from_db(row["updated_at"]),
    )


class MetadataStore:
    """Metadata rows keyed by element id / Rebrickable minifig id, shared by all owners."""

    def __init__(self, db_path: Path = config.DB_PATH):
        self.db_path = db_path

    async def initialize(self) -> None:
        await initialize(self.db_path)

    async def get_part(self, element_id: str) -> Optional[PartMetadata]:
        parts = await self.get_parts([element_id])
        return parts.get(element_id)

    async def get_parts(self, element_ids: Iterable[str]) -> dict[str, PartMetadata]:
        """Bulk lookup; ids without a row are absent from the result."""
        ids = list(dict.fromkeys(element_ids))
        found: dict[str, PartMetadata] = {}
        if not ids:
            return found
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            for chunk in chunked(ids):
                cursor = await db.execute(
                    f"SELECT * FROM part_metadata WHERE element_id IN ({placeholders(chunk)})",
                    chunk,
                )
                for row in await cursor.fetchall():
                    found[row["element_id"]] = _part_from_row(row)
        return found

    async def upsert_part(self, part: PartMetadata) -> PartMetadata:
        """Insert or replace a part row; last writer wins."""
        part = part.model_copy(update={"updated_at": part.updated_at or utcnow()})
        colors = [color.model_dump() for color in part.available_colors]
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO part_metadata
                    (element_id, element_name, invalid, cache_incomplete,
                     available_colors, expires_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(element_id) DO UPDATE SET
                    element_name = excluded.element_name,
                    invalid = excluded.invalid,
                    cache_incomplete = excluded.cache_incomplete,
                    available_colors = excluded.available_colors,
                    expires_at = excluded.expires_at,
                    updated_at = excluded.updated_at
                """,
                (
                    part.element_id,
                    part.element_name,
                    int(part.invalid),
                    int(part.cache_incomplete),
                    dumps(colors),
                    to_db(part.expires_at),
                    to_db(part.updated_at),
                ),
            )
            await db.commit()
        return part

    async def get_minifig(self, minifig_id: str) -> Optional[MinifigMetadata]:
        minifigs = await self.get_minifigs([minifig_id])
        return minifigs.get(minifig_id)

    async def get_minifigs(self, minifig_ids: Iterable[str]) -> dict[str, MinifigMetadata]:
        ids = list(dict.fromkeys(minifig_ids))
        found: dict[str, MinifigMetadata] = {}
        if not ids:
            return found
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            for chunk in chunked(ids):
                cursor = await db.execute(
                    f"SELECT * FROM minifig_metadata WHERE minifig_id_rebrickable IN ({placeholders(chunk)})",
                    chunk,
                )
                for row in await cursor.fetchall():
                    found[row["minifig_id_rebrickable"]] = _minifig_from_row(row)
        return found

    async def upsert_minifig(self, minifig: MinifigMetadata) -> MinifigMetadata:
        """
        Insert or update minifig metadata.

        A BrickLink id already on the row survives writes that don't carry
        one; it is never cleared by a metadata refresh.
        """
        minifig = minifig.model_copy(update={"updated_at": minifig.updated_at or utcnow()})
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO minifig_metadata
                    (minifig_id_rebrickable, minifig_name, minifig_image,
                     minifig_id_bricklink, expires_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(minifig_id_rebrickable) DO UPDATE SET
                    minifig_name = COALESCE(excluded.minifig_name, minifig_metadata.minifig_name),
                    minifig_image = COALESCE(excluded.minifig_image, minifig_metadata.minifig_image),
                    minifig_id_bricklink = COALESCE(
                        excluded.minifig_id_bricklink, minifig_metadata.minifig_id_bricklink
                    ),
                    expires_at = excluded.expires_at,
                    updated_at = excluded.updated_at
                """,
                (
                    minifig.minifig_id_rebrickable,
                    minifig.minifig_name,
                    minifig.minifig_image,
                    minifig.minifig_id_bricklink,
                    to_db(minifig.expires_at),
                    to_db(minifig.updated_at),
                ),
            )
            await db.commit()
        return await self.get_minifig(minifig.minifig_id_rebrickable) or minifig

    async def set_minifig_bricklink_id(
        self, minifig_id: str, bricklink_id: str, minifig_name: Optional[str] = None
    ) -> None:
        """Store a resolved BrickLink id, creating a minimal row when needed."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO minifig_metadata
                    (minifig_id_rebrickable, minifig_name, minifig_id_bricklink, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(minifig_id_rebrickable) DO UPDATE SET
                    minifig_id_bricklink = excluded.minifig_id_bricklink,
                    minifig_name = COALESCE(minifig_metadata.minifig_name, excluded.minifig_name),
                    updated_at = excluded.updated_at
                """,
                (minifig_id, minifig_name, bricklink_id, to_db(utcnow())),
            )
            await db.commit()
        logger.info(f"Stored BrickLink id {bricklink_id} for minifig {minifig_id}")

    async def get_stats(self) -> dict:
        """Row counts for health reporting."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM part_metadata),
                    (SELECT COUNT(*) FROM part_metadata WHERE invalid = 1),
                    (SELECT COUNT(*) FROM part_metadata WHERE cache_incomplete = 1),
                    (SELECT COUNT(*) FROM minifig_metadata)
                """
            )
            parts, invalid, incomplete, minifigs = await cursor.fetchone()
        return {
            "parts": parts,
            "invalid_parts": invalid,
            "incomplete_parts": incomplete,
            "minifigs": minifigs,
        }
