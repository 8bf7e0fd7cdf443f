"""Tests for price freshness, history archiving and trends."""
from datetime import timedelta

import pytest

from brickcache.parse.models import MinifigRef, OutcomeStatus, PriceData, PriceHistoryEntry
from brickcache.services.prices import calculate_trend
from conftest import SEARCH_PATH, search_payload

REF = MinifigRef(minifig_id_rebrickable="fig-000001", minifig_id_bricklink="sw0001a")


def test_trend_up_and_down():
    """Percentage change is absolute and rounded to one decimal."""
    up = calculate_trend(12.0, 10.0)
    assert up.direction == "up"
    assert up.percentage == 20.0

    down = calculate_trend(9.0, 12.0)
    assert down.direction == "down"
    assert down.percentage == 25.0


def test_trend_without_baseline():
    """A zero or missing previous value has no trend."""
    for current, previous in [(5.0, 0.0), (5.0, None), (None, 5.0), (5.0, 5.0)]:
        trend = calculate_trend(current, previous)
        assert trend.direction == "none"
        assert trend.percentage == 0


@pytest.mark.asyncio
async def test_history_rows_are_rate_limited_by_half_expiry(context, upstream, clock):
    """Refreshes at t0, +1h, +2h, +27h leave 0, 1, 1, 2 history rows."""
    upstream.add(SEARCH_PATH, json=search_payload())
    prices = context.prices
    counts = []

    for step in (timedelta(0), timedelta(hours=1), timedelta(hours=1), timedelta(hours=25)):
        clock.advance(seconds=step.total_seconds())
        outcome = await prices.refresh_price(REF)
        assert outcome.status is OutcomeStatus.FETCHED
        counts.append(len(await context.price_store.get_history(REF.minifig_id_rebrickable)))

    assert counts == [0, 1, 1, 2]


@pytest.mark.asyncio
async def test_archived_row_expires_after_five_windows(context, upstream, clock):
    """History rows live five price expiry windows."""
    upstream.add(SEARCH_PATH, json=search_payload())
    await context.prices.refresh_price(REF)
    clock.advance(hours=1)
    await context.prices.refresh_price(REF)

    entry = await context.price_store.latest_history(REF.minifig_id_rebrickable)
    assert entry.created_at == clock()
    assert entry.expires_at == clock() + timedelta(days=10)
    assert entry.price_data.avg_price_new == 12.0


@pytest.mark.asyncio
async def test_live_snapshot_served_without_requests(context, upstream, clock):
    """A fresh snapshot is returned as is."""
    upstream.add(SEARCH_PATH, json=search_payload())
    await context.prices.refresh_price(REF)
    before = len(upstream.requests)

    clock.advance(hours=12)
    price = await context.prices.get_latest_price(REF)

    assert price.avg_price_new == 12.0
    assert price.trends.avg_price_new.direction == "none"
    assert len(upstream.requests) == before
    assert await context.prices.is_expired(REF.minifig_id_rebrickable) is False


@pytest.mark.asyncio
async def test_expired_snapshot_is_refreshed_with_trend(context, upstream, clock):
    """After expiry a new price is fetched and compared to history."""
    upstream.add(SEARCH_PATH, json=search_payload())
    await context.prices.refresh_price(REF)

    clock.advance(days=3)
    assert await context.prices.is_expired(REF.minifig_id_rebrickable) is True
    assert await context.prices.list_expired() == [REF.minifig_id_rebrickable]

    upstream.add(SEARCH_PATH, json=search_payload(new_min="US $12.00", new_max="US $16.00"))
    price = await context.prices.get_latest_price(REF)

    assert price.min_price_new == 12.0
    assert price.trends.min_price_new.direction == "up"
    assert price.trends.min_price_new.percentage == 20.0
    assert price.trends.min_price_used.direction == "none"
    assert price.trends.last_updated == clock()


@pytest.mark.asyncio
async def test_failed_fetch_returns_defaults(context, upstream):
    """No listing means null prices and no archive."""
    upstream.add(SEARCH_PATH, status=500, json={})

    price = await context.prices.get_latest_price(REF)

    assert price.avg_price_new is None
    assert price.currency_code == "USD"
    assert price.trends.avg_price_new.direction == "none"
    assert await context.price_store.get_snapshot(REF.minifig_id_rebrickable) is None


@pytest.mark.asyncio
async def test_rate_limited_refresh_keeps_snapshot(context, upstream, clock):
    """A 429 leaves the current snapshot and history untouched."""
    upstream.add(SEARCH_PATH, json=search_payload())
    await context.prices.refresh_price(REF)

    clock.advance(days=3)
    upstream.add(SEARCH_PATH, status=429)
    outcome = await context.prices.refresh_price(REF)

    assert outcome.status is OutcomeStatus.RATE_LIMITED
    snapshot = await context.price_store.get_snapshot(REF.minifig_id_rebrickable)
    assert snapshot.is_expired is False
    assert await context.price_store.get_history(REF.minifig_id_rebrickable) == []


@pytest.mark.asyncio
async def test_unresolvable_minifig_is_not_found(context, upstream):
    """Without a BrickLink id there is nothing to price."""
    ref = MinifigRef(minifig_id_rebrickable="fig-000009", minifig_name="Nobody")

    outcome = await context.prices.refresh_price(ref)

    assert outcome.status is OutcomeStatus.NOT_FOUND
    assert upstream.count(SEARCH_PATH) == 0


@pytest.mark.asyncio
async def test_purge_expired_history(context, clock):
    """Only rows past expires_at are deleted."""
    store = context.price_store
    now = clock()
    for offset_days in (-2, -1, 5):
        await store.append_history(
            PriceHistoryEntry(
                minifig_id_rebrickable="fig-000001",
                price_data=PriceData(avg_price_new=1.0),
                created_at=now - timedelta(days=20),
                expires_at=now + timedelta(days=offset_days),
            )
        )

    assert await store.count_expired_history(now) == 2
    assert await store.purge_expired_history(now) == 2
    assert len(await store.get_history("fig-000001")) == 1
