"""BrickLink id resolution and marketplace price lookups."""
import logging
from typing import Optional

import httpx

from brickcache.fetch.client import FetchClient, is_rate_limited, read_json
from brickcache.fetch.endpoints import bricklink_inventory_url, bricklink_search_url
from brickcache.fetch.errors import UpstreamError
from brickcache.fetch.rebrickable import RebrickableFetcher
from brickcache.fetch.single_flight import SingleFlight
from brickcache.parse.bricklink import first_search_item, parse_inventory_minifigs, parse_price_search
from brickcache.parse.matching import Matcher, RapidFuzzMatcher, match_minifig_row
from brickcache.parse.models import UNKNOWN_MINIFIG_NAME, PriceFetchResult
from brickcache.parse.rebrickable import lowest_numeric_set
from brickcache.store.cache_manager import CacheManager

logger = logging.getLogger(__name__)


def _known_name(name: Optional[str]) -> Optional[str]:
    """A real minifig name, or None for a blank or display placeholder."""
    if not name or name == UNKNOWN_MINIFIG_NAME:
        return None
    return name


class BricklinkFetcher:
    """Scrapes BrickLink for minifig ids and asks its catalog search for prices."""

    def __init__(
        self,
        client: FetchClient,
        cache: CacheManager,
        rebrickable: RebrickableFetcher,
        matcher: Optional[Matcher] = None,
        single_flight: Optional[SingleFlight] = None,
    ):
        self.client = client
        self.cache = cache
        self.rebrickable = rebrickable
        self.matcher = matcher or RapidFuzzMatcher()
        self.single_flight = single_flight or SingleFlight()

    async def resolve_bricklink_id(
        self, minifig_id: str, minifig_name: Optional[str] = None
    ) -> Optional[str]:
        """
        Find the BrickLink id of a Rebrickable minifig.

        Looks at the inventory of the lowest-numbered set that contains the
        minifig and fuzzy-matches the minifig name against its rows. A
        resolved id is stored permanently. Returns None when any step fails.
        """
        return await self.single_flight.do(
            ("bricklink_id", minifig_id),
            lambda: self._resolve(minifig_id, minifig_name),
        )

    async def _resolve(self, minifig_id: str, minifig_name: Optional[str]) -> Optional[str]:
        cached = await self.cache.get_minifig(minifig_id)
        if cached is not None and cached.minifig_id_bricklink:
            return cached.minifig_id_bricklink

        name = _known_name(minifig_name) or _known_name(cached.minifig_name if cached else None)
        try:
            if not name:
                details = await self.rebrickable.fetch_minifig_details(minifig_id)
                name = details.minifig_name if details else None
            if not name:
                logger.warning(f"No name known for minifig {minifig_id}, cannot resolve BrickLink id")
                return None

            set_number = lowest_numeric_set(await self.rebrickable.fetch_minifig_sets(minifig_id))
            if set_number is None:
                logger.warning(f"No numeric set found containing minifig {minifig_id}")
                return None

            response = await self.client.fetch_bricklink(bricklink_inventory_url(set_number))
            if not response.is_success:
                logger.warning(
                    f"BrickLink inventory for set {set_number} returned HTTP {response.status_code}"
                )
                return None

            rows = parse_inventory_minifigs(response.text)
            row = match_minifig_row(name, rows, self.matcher)
            if row is None:
                logger.warning(f"No minifig rows matched '{name}' in set {set_number}")
                return None
        except (UpstreamError, httpx.HTTPError) as e:
            logger.error(f"Failed to resolve BrickLink id for {minifig_id}: {e}")
            return None

        bricklink_id = row["id"]
        await self.cache.set_minifig_bricklink_id(minifig_id, bricklink_id, name)
        logger.info(f"Resolved minifig {minifig_id} to BrickLink {bricklink_id} via set {set_number}")
        return bricklink_id

    async def fetch_price(self, bricklink_id: str) -> PriceFetchResult:
        """Price range from the catalog search. A 429 is reported, not raised."""
        response = await self.client.fetch_bricklink(
            bricklink_search_url(bricklink_id), rate_limited_retry=False
        )
        if is_rate_limited(response):
            logger.warning(f"Rate limited fetching BrickLink price for {bricklink_id}")
            return PriceFetchResult(rate_limited=True)
        if not response.is_success:
            logger.warning(f"BrickLink price for {bricklink_id} returned HTTP {response.status_code}")
            return PriceFetchResult()

        try:
            payload = read_json(response)
        except UpstreamError as e:
            logger.warning(f"Unreadable BrickLink price response for {bricklink_id}: {e}")
            return PriceFetchResult()

        price_data = parse_price_search(payload)
        if price_data is None:
            logger.info(f"No BrickLink listing found for {bricklink_id}")
            return PriceFetchResult()

        item = first_search_item(payload) or {}
        return PriceFetchResult(price_data=price_data, item_name=item.get("strItemName"))
