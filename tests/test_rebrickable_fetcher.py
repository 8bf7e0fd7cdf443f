"""Tests for cache-first Rebrickable part and minifig fetching."""
import asyncio

import pytest

from brickcache.fetch.errors import RateLimitedError, UpstreamNotFoundError
from brickcache.parse.models import INVALID_ELEMENT_NAME, OutcomeStatus
from brickcache.store.cache_manager import CacheManager
from conftest import RB, part_colors_payload

COLORS_3001 = f"{RB}/parts/3001/colors/"
DETAILS_3001 = f"{RB}/parts/3001/"


def add_part_3001(upstream):
    upstream.add(COLORS_3001, json=part_colors_payload((4, "Red")))
    upstream.add(DETAILS_3001, json={"part_num": "3001", "name": "Brick 2 x 4"})


@pytest.mark.asyncio
async def test_fetch_stores_colors_and_name(context, upstream):
    """A fresh part is fetched once and then served from cache."""
    add_part_3001(upstream)

    outcome = await context.rebrickable.fetch_part_colors("3001")
    assert outcome.status is OutcomeStatus.FETCHED

    part = await context.cache.get_part("3001")
    assert part.element_name == "Brick 2 x 4"
    assert part.invalid is False
    assert part.cache_incomplete is False
    assert [color.to_api()["colorId"] for color in part.available_colors] == ["4"]
    assert part.available_colors[0].color == "Red"

    before = len(upstream.requests)
    again = await context.rebrickable.fetch_part_colors("3001")
    assert again.status is OutcomeStatus.HIT
    assert len(upstream.requests) == before


@pytest.mark.asyncio
async def test_stored_part_survives_memory_layer(context, upstream):
    """A new cache over the same database still sees the part."""
    add_part_3001(upstream)
    await context.rebrickable.fetch_part_colors("3001")

    fresh = CacheManager(context.metadata_store)
    part = await fresh.get_part("3001")

    assert part.element_name == "Brick 2 x 4"
    assert part.available_colors[0].color_id == "4"


@pytest.mark.asyncio
async def test_unknown_part_becomes_invalid_sentinel(context, upstream):
    """A 404 stores the invalid placeholder and is never fetched again."""
    outcome = await context.rebrickable.fetch_part_colors("99999999")
    assert outcome.status is OutcomeStatus.NOT_FOUND
    assert outcome.terminal

    part = await context.cache.get_part("99999999")
    assert part.invalid is True
    assert part.cache_incomplete is False
    assert part.element_name == INVALID_ELEMENT_NAME
    assert [color.to_api() for color in part.available_colors] == [{"empty": True}]

    before = len(upstream.requests)
    again = await context.rebrickable.fetch_part_colors("99999999")
    assert again.status is OutcomeStatus.INVALID
    assert len(upstream.requests) == before


@pytest.mark.asyncio
async def test_zero_colors_is_incomplete_and_refetched(context, upstream):
    """No colours marks the part incomplete; the next run tries again."""
    upstream.add(COLORS_3001, json=part_colors_payload())
    upstream.add(DETAILS_3001, json={"name": "Brick 2 x 4"})

    outcome = await context.rebrickable.fetch_part_colors("3001")
    assert outcome.status is OutcomeStatus.INCOMPLETE
    part = await context.cache.get_part("3001")
    assert part.cache_incomplete is True
    assert part.available_colors == []

    upstream.add(COLORS_3001, json=part_colors_payload((4, "Red")))
    outcome = await context.rebrickable.fetch_part_colors("3001")
    assert outcome.status is OutcomeStatus.FETCHED
    assert upstream.count(COLORS_3001) == 2
    # Name came from the cached row the second time
    assert upstream.count(DETAILS_3001) == 1


@pytest.mark.asyncio
async def test_background_fetch_reports_429_without_retrying(context, upstream, retry_sleep):
    """Batch enrichment leaves cooldowns to the runner."""
    upstream.add(COLORS_3001, status=429)

    outcome = await context.rebrickable.fetch_part_colors("3001")

    assert outcome.status is OutcomeStatus.RATE_LIMITED
    assert outcome.rate_limited
    assert upstream.count(COLORS_3001) == 1
    assert retry_sleep.calls == []
    assert await context.cache.get_part("3001") is None


@pytest.mark.asyncio
async def test_background_fetch_reports_429_on_name_lookup(context, upstream, retry_sleep):
    """A 429 on the part name is reported to the runner, not waited out."""
    upstream.add(COLORS_3001, json=part_colors_payload((4, "Red")))
    upstream.add(DETAILS_3001, status=429, headers={"Retry-After": "60"})

    outcome = await context.rebrickable.fetch_part_colors("3001")

    assert outcome.status is OutcomeStatus.RATE_LIMITED
    assert upstream.count(DETAILS_3001) == 1
    assert retry_sleep.calls == []
    assert await context.cache.get_part("3001") is None


@pytest.mark.asyncio
async def test_stale_part_is_refetched(context, upstream, clock):
    """Entries past expires_at are treated as misses."""
    add_part_3001(upstream)
    await context.rebrickable.fetch_part_colors("3001")

    clock.advance(days=31)
    outcome = await context.rebrickable.fetch_part_colors("3001")

    assert outcome.status is OutcomeStatus.FETCHED
    assert upstream.count(COLORS_3001) == 2


@pytest.mark.asyncio
async def test_concurrent_requests_share_one_fetch(context, upstream):
    """Simultaneous lookups of one id hit the upstream once."""
    add_part_3001(upstream)

    outcomes = await asyncio.gather(
        context.rebrickable.fetch_part_colors("3001"),
        context.rebrickable.fetch_part_colors("3001"),
        context.rebrickable.fetch_part_colors("3001"),
    )

    assert {outcome.status for outcome in outcomes} == {OutcomeStatus.FETCHED}
    assert upstream.count(COLORS_3001) == 1
    assert upstream.count(DETAILS_3001) == 1


@pytest.mark.asyncio
async def test_fetch_part_details_raises_for_unknown_id(context, upstream):
    """The request path turns a 404 into UpstreamNotFoundError."""
    with pytest.raises(UpstreamNotFoundError):
        await context.rebrickable.fetch_part_details("99999999")


@pytest.mark.asyncio
async def test_fetch_part_details_raises_when_rate_limited(context, upstream, retry_sleep):
    """The request path retries 429s and then gives up with RateLimitedError."""
    upstream.add(COLORS_3001, status=429)

    with pytest.raises(RateLimitedError):
        await context.rebrickable.fetch_part_details("3001")

    assert upstream.count(COLORS_3001) == 4
    assert retry_sleep.calls == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_minifig_details_cached(context, upstream):
    """Minifig name and image are stored and reused."""
    path = f"{RB}/minifigs/fig-000001/"
    upstream.add(
        path,
        json={"set_num": "fig-000001", "name": "Qui-Gon Jinn", "set_img_url": "https://img/fig1.jpg"},
    )

    outcome = await context.rebrickable.enrich_minifig("fig-000001")
    assert outcome.status is OutcomeStatus.FETCHED

    minifig = await context.rebrickable.fetch_minifig_details("fig-000001")
    assert minifig.minifig_name == "Qui-Gon Jinn"
    assert minifig.minifig_image == "https://img/fig1.jpg"
    assert upstream.count(path) == 1


@pytest.mark.asyncio
async def test_unknown_minifig_details_is_none(context, upstream):
    """A 404 minifig has no details."""
    assert await context.rebrickable.fetch_minifig_details("fig-999999") is None


@pytest.mark.asyncio
async def test_set_parts_follow_pagination(context, upstream):
    """All pages are read and spare parts dropped."""
    upstream.add(
        f"{RB}/sets/7101-1/parts/",
        json={
            "next": "https://rebrickable.com/api/v3/lego/sets/7101-1/parts/page2/",
            "results": [
                {"part": {"part_num": "3001"}, "color": {"id": 4, "name": "Red"}, "is_spare": False},
                {"part": {"part_num": "3023"}, "color": {"id": 0, "name": "Black"}, "is_spare": True},
            ],
        },
    )
    upstream.add(
        f"{RB}/sets/7101-1/parts/page2/",
        json={
            "next": None,
            "results": [
                {"part": {"part_num": "3003"}, "color": {"id": 1, "name": "Blue"}, "is_spare": False},
            ],
        },
    )

    items = await context.rebrickable.fetch_set_parts("7101-1")

    assert [item["part"]["part_num"] for item in items] == ["3001", "3003"]
