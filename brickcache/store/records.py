"""User-owned brick and minifig records placed in tables."""
import logging
from pathlib import Path
from typing import Any, Iterable, Optional

import aiosqlite

from brickcache.config import config
from brickcache.parse.models import MinifigMetadata, PartMetadata, UserBrick, UserMinifig
from brickcache.store.schema import initialize, to_db, utcnow

logger = logging.getLogger(__name__)

BRICK_COLUMNS = (
    "uuid",
    "element_id",
    "element_color_id",
    "element_color",
    "quantity_on_hand",
    "quantity_required",
    "count_complete",
    "highlighted",
    "invalid",
    "table_id",
    "owner_id",
)

MINIFIG_COLUMNS = (
    "uuid",
    "minifig_id_rebrickable",
    "minifig_id_bricklink",
    "quantity_on_hand",
    "quantity_required",
    "count_complete",
    "highlighted",
    "invalid",
    "table_id",
    "owner_id",
)

# Fields a caller may change on an existing record
BRICK_UPDATABLE = set(BRICK_COLUMNS) - {"uuid", "table_id", "owner_id"}
MINIFIG_UPDATABLE = set(MINIFIG_COLUMNS) - {"uuid", "table_id", "owner_id"}

BOOL_COLUMNS = {"count_complete", "highlighted", "invalid"}


def _to_row(record: Any, columns: tuple[str, ...]) -> tuple:
    values = []
    for column in columns:
        value = getattr(record, column)
        values.append(int(value) if column in BOOL_COLUMNS else value)
    return tuple(values)


def _from_row(model: type, row: aiosqlite.Row, columns: tuple[str, ...]):
    data = {column: row[column] for column in columns}
    for column in BOOL_COLUMNS:
        data[column] = bool(data[column])
    return model(**data)


def _scope(table_id: Optional[str], owner_id: Optional[str]) -> tuple[str, list]:
    clauses, params = [], []
    if table_id is not None:
        clauses.append("table_id = ?")
        params.append(table_id)
    if owner_id is not None:
        clauses.append("owner_id = ?")
        params.append(owner_id)
    return "".join(f" AND {clause}" for clause in clauses), params


class RecordStore:
    """Per-owner records. Metadata is joined in on read, never copied here."""

    def __init__(self, db_path: Path = config.DB_PATH):
        self.db_path = db_path

    async def initialize(self) -> None:
        await initialize(self.db_path)

    async def _insert(self, table: str, columns: tuple[str, ...], records: list) -> None:
        if not records:
            return
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}, created_at) "
            f"VALUES ({', '.join('?' for _ in columns)}, ?)"
        )
        created_at = to_db(utcnow())
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany(sql, [_to_row(record, columns) + (created_at,) for record in records])
            await db.commit()

    async def add_bricks(self, bricks: list[UserBrick]) -> list[UserBrick]:
        await self._insert("user_bricks", BRICK_COLUMNS, bricks)
        return bricks

    async def add_minifigs(self, minifigs: list[UserMinifig]) -> list[UserMinifig]:
        await self._insert("user_minifigs", MINIFIG_COLUMNS, minifigs)
        return minifigs

    async def get_brick(self, uuid: str) -> Optional[UserBrick]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM user_bricks WHERE uuid = ?", (uuid,))
            row = await cursor.fetchone()
        return _from_row(UserBrick, row, BRICK_COLUMNS) if row else None

    async def get_minifig(self, uuid: str) -> Optional[UserMinifig]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM user_minifigs WHERE uuid = ?", (uuid,))
            row = await cursor.fetchone()
        return _from_row(UserMinifig, row, MINIFIG_COLUMNS) if row else None

    async def list_bricks(self, table_id: str, owner_id: Optional[str] = None) -> list[UserBrick]:
        where, params = _scope(table_id, owner_id)
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT * FROM user_bricks WHERE 1 = 1{where} ORDER BY created_at, rowid",
                params,
            )
            return [_from_row(UserBrick, row, BRICK_COLUMNS) for row in await cursor.fetchall()]

    async def list_minifigs(self, table_id: str, owner_id: Optional[str] = None) -> list[UserMinifig]:
        where, params = _scope(table_id, owner_id)
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT * FROM user_minifigs WHERE 1 = 1{where} ORDER BY created_at, rowid",
                params,
            )
            return [_from_row(UserMinifig, row, MINIFIG_COLUMNS) for row in await cursor.fetchall()]

    async def update_brick(self, uuid: str, changes: dict[str, Any]) -> Optional[UserBrick]:
        """
        Apply field changes to a brick.

        Changing ``element_id`` points the record at a different part, so the
        mirrored ``invalid`` flag is reset until it is enriched again.
        """
        current = await self.get_brick(uuid)
        if current is None:
            return None

        updates = {key: value for key, value in changes.items() if key in BRICK_UPDATABLE}
        if "element_id" in updates and updates["element_id"] != current.element_id:
            updates["invalid"] = False
        if not updates:
            return current

        updated = current.model_copy(update=updates)
        columns = sorted(updates)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                f"UPDATE user_bricks SET {', '.join(f'{column} = ?' for column in columns)} WHERE uuid = ?",
                _to_row(updated, tuple(columns)) + (uuid,),
            )
            await db.commit()
        return updated

    async def update_minifig(self, uuid: str, changes: dict[str, Any]) -> Optional[UserMinifig]:
        current = await self.get_minifig(uuid)
        if current is None:
            return None

        updates = {key: value for key, value in changes.items() if key in MINIFIG_UPDATABLE}
        if (
            "minifig_id_rebrickable" in updates
            and updates["minifig_id_rebrickable"] != current.minifig_id_rebrickable
        ):
            updates["invalid"] = False
            updates.setdefault("minifig_id_bricklink", None)
        if not updates:
            return current

        updated = current.model_copy(update=updates)
        columns = sorted(updates)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                f"UPDATE user_minifigs SET {', '.join(f'{column} = ?' for column in columns)} WHERE uuid = ?",
                _to_row(updated, tuple(columns)) + (uuid,),
            )
            await db.commit()
        return updated

    async def delete_brick(self, uuid: str) -> bool:
        """Remove the user row only; shared metadata stays."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM user_bricks WHERE uuid = ?", (uuid,))
            await db.commit()
            return cursor.rowcount > 0

    async def delete_minifig(self, uuid: str) -> bool:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM user_minifigs WHERE uuid = ?", (uuid,))
            await db.commit()
            return cursor.rowcount > 0

    async def apply_part_metadata(
        self,
        parts: Iterable[PartMetadata],
        table_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> int:
        """Mirror each part's ``invalid`` flag onto matching bricks in scope."""
        where, scope_params = _scope(table_id, owner_id)
        params = [(int(part.invalid), part.element_id, *scope_params) for part in parts]
        if not params:
            return 0
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.executemany(
                f"UPDATE user_bricks SET invalid = ? WHERE element_id = ?{where}",
                params,
            )
            await db.commit()
            return cursor.rowcount

    async def apply_minifig_metadata(
        self,
        minifigs: Iterable[MinifigMetadata],
        table_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> int:
        """Copy resolved BrickLink ids onto matching minifig records in scope."""
        where, scope_params = _scope(table_id, owner_id)
        params = [
            (minifig.minifig_id_bricklink, minifig.minifig_id_rebrickable, *scope_params)
            for minifig in minifigs
            if minifig.minifig_id_bricklink
        ]
        if not params:
            return 0
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.executemany(
                f"UPDATE user_minifigs SET minifig_id_bricklink = ? WHERE minifig_id_rebrickable = ?{where}",
                params,
            )
            await db.commit()
            return cursor.rowcount
