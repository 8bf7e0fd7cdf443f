"""Tests for the SQLite-backed stores and the memory cache layer."""
import pytest

from brickcache.parse.models import MinifigMetadata, PartMetadata, UserBrick, UserMinifig
from brickcache.store.cache_manager import CacheManager
from brickcache.store.schema import chunked, from_db, to_db


def test_timestamps_round_trip_at_fixed_width(clock):
    """Stored timestamps sort as strings and parse back to aware UTC."""
    value = to_db(clock())
    assert value == "2025-01-01T00:00:00.000000Z"
    assert from_db(value) == clock()
    assert from_db(None) is None


def test_chunked():
    """Large id lists are split to stay under the parameter limit."""
    assert [len(chunk) for chunk in chunked(list(range(1203)))] == [500, 500, 203]


@pytest.mark.asyncio
async def test_bulk_part_lookup_skips_unknown(context):
    """Only ids with a row come back."""
    await context.metadata_store.upsert_part(PartMetadata(element_id="3001", element_name="Brick 2 x 4"))
    await context.metadata_store.upsert_part(PartMetadata.invalid_placeholder("99999999"))

    parts = await context.metadata_store.get_parts(["3001", "99999999", "3003", "3001"])

    assert set(parts) == {"3001", "99999999"}
    assert parts["99999999"].invalid is True
    assert parts["3001"].updated_at is not None

    stats = await context.metadata_store.get_stats()
    assert stats["parts"] == 2
    assert stats["invalid_parts"] == 1


@pytest.mark.asyncio
async def test_minifig_refresh_keeps_bricklink_id(context):
    """A metadata write without a BrickLink id never clears the stored one."""
    store = context.metadata_store
    await store.set_minifig_bricklink_id("fig-1", "sw0003", "Qui-Gon Jinn")
    await store.upsert_minifig(MinifigMetadata(minifig_id_rebrickable="fig-1", minifig_image="https://img/1.jpg"))

    minifig = await store.get_minifig("fig-1")

    assert minifig.minifig_id_bricklink == "sw0003"
    assert minifig.minifig_name == "Qui-Gon Jinn"
    assert minifig.minifig_image == "https://img/1.jpg"


@pytest.mark.asyncio
async def test_memory_layer_expires_after_ttl(context):
    """Memory entries older than the TTL are reloaded from the store."""
    now = [0.0]
    cache = CacheManager(context.metadata_store, ttl=10, clock=lambda: now[0])
    await cache.put_part(PartMetadata(element_id="3001", element_name="Brick 2 x 4"))

    await context.metadata_store.upsert_part(PartMetadata(element_id="3001", element_name="Renamed"))
    assert (await cache.get_part("3001")).element_name == "Brick 2 x 4"

    now[0] = 11.0
    assert (await cache.get_part("3001")).element_name == "Renamed"


@pytest.mark.asyncio
async def test_bricklink_id_write_invalidates_memory(context):
    """A resolved id is visible immediately through the cache."""
    await context.cache.put_minifig(MinifigMetadata(minifig_id_rebrickable="fig-1", minifig_name="Han Solo"))
    await context.cache.set_minifig_bricklink_id("fig-1", "sw0001")

    minifig = await context.cache.get_minifig("fig-1")
    assert minifig.minifig_id_bricklink == "sw0001"
    assert minifig.minifig_name == "Han Solo"


@pytest.mark.asyncio
async def test_records_are_scoped_by_table_and_owner(context):
    """Listing filters on table and, when given, owner."""
    records = context.record_store
    await records.add_bricks(
        [
            UserBrick(element_id="3001", table_id="t1", owner_id="alice"),
            UserBrick(element_id="3002", table_id="t1", owner_id="bob"),
            UserBrick(element_id="3003", table_id="t2", owner_id="alice"),
        ]
    )

    assert [b.element_id for b in await records.list_bricks("t1")] == ["3001", "3002"]
    assert [b.element_id for b in await records.list_bricks("t1", "bob")] == ["3002"]


@pytest.mark.asyncio
async def test_changing_element_id_resets_invalid(context):
    """A brick pointed at a new part is no longer flagged invalid."""
    brick = UserBrick(element_id="99999999", invalid=True, table_id="t1")
    await context.record_store.add_bricks([brick])

    updated = await context.record_store.update_brick(
        brick.uuid, {"element_id": "3001", "quantity_on_hand": 3, "owner_id": "mallory"}
    )

    assert updated.element_id == "3001"
    assert updated.invalid is False
    assert updated.quantity_on_hand == 3
    stored = await context.record_store.get_brick(brick.uuid)
    assert stored.owner_id == "default"
    assert stored.invalid is False


@pytest.mark.asyncio
async def test_delete_removes_only_the_record(context):
    """Deleting a brick leaves the shared part metadata alone."""
    await context.metadata_store.upsert_part(PartMetadata(element_id="3001", element_name="Brick 2 x 4"))
    brick = UserBrick(element_id="3001", table_id="t1")
    await context.record_store.add_bricks([brick])

    assert await context.record_store.delete_brick(brick.uuid) is True
    assert await context.record_store.delete_brick(brick.uuid) is False
    assert await context.metadata_store.get_part("3001") is not None


@pytest.mark.asyncio
async def test_apply_minifig_metadata_copies_bricklink_id(context):
    """Resolved BrickLink ids are copied to records of that minifig."""
    minifig = UserMinifig(minifig_id_rebrickable="fig-1", table_id="t1")
    await context.record_store.add_minifigs([minifig])

    count = await context.record_store.apply_minifig_metadata(
        [MinifigMetadata(minifig_id_rebrickable="fig-1", minifig_id_bricklink="sw0003")], "t1"
    )

    assert count == 1
    stored = await context.record_store.get_minifig(minifig.uuid)
    assert stored.minifig_id_bricklink == "sw0003"
