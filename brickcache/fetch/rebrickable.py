"""Rebrickable catalog fetcher, cache-first."""
import logging
from datetime import datetime
from typing import Any, Callable, Optional

import httpx

from brickcache.config import config
from brickcache.fetch.client import FetchClient, is_rate_limited, parse_retry_after, read_json
from brickcache.fetch.endpoints import (
    minifig_sets_url,
    minifig_url,
    part_colors_url,
    part_url,
    set_parts_url,
)
from brickcache.fetch.errors import RateLimitedError, UpstreamError, UpstreamNotFoundError
from brickcache.fetch.single_flight import SingleFlight
from brickcache.parse.models import (
    INVALID_ELEMENT_NAME,
    FetchOutcome,
    MinifigMetadata,
    OutcomeStatus,
    PartMetadata,
)
from brickcache.parse.rebrickable import (
    parse_minifig_details,
    parse_part_colors,
    parse_part_name,
    parse_set_numbers,
    parse_set_parts_page,
)
from brickcache.store.cache_manager import CacheManager
from brickcache.store.schema import after, utcnow

logger = logging.getLogger(__name__)

PartResult = tuple[OutcomeStatus, Optional[PartMetadata]]
MinifigResult = tuple[OutcomeStatus, Optional[MinifigMetadata]]


def _raise_for_status(response: httpx.Response, what: str) -> None:
    """Turn a non-2xx response into the matching upstream error."""
    url = str(response.request.url)
    if is_rate_limited(response):
        raise RateLimitedError(
            f"Rate limited while fetching {what}", retry_after=parse_retry_after(response), url=url
        )
    if response.status_code == 404:
        raise UpstreamNotFoundError(f"{what} not found", status_code=404, url=url)
    if not response.is_success:
        raise UpstreamError(
            f"Unexpected status {response.status_code} while fetching {what}",
            status_code=response.status_code,
            url=url,
        )


class RebrickableFetcher:
    """Part colours, part names, minifig details and set inventories."""

    def __init__(
        self,
        client: FetchClient,
        cache: CacheManager,
        single_flight: Optional[SingleFlight] = None,
        clock: Callable[[], datetime] = utcnow,
        part_expiry: float = config.CACHE_EXPIRY_BRICK,
        minifig_expiry: float = config.CACHE_EXPIRY_MINIFIG,
    ):
        self.client = client
        self.cache = cache
        self.single_flight = single_flight or SingleFlight()
        self.clock = clock
        self.part_expiry = part_expiry
        self.minifig_expiry = minifig_expiry

    # Parts

    async def fetch_part_colors(self, element_id: str) -> FetchOutcome:
        """Background enrichment of one part. 429s come back as an outcome."""
        status, _ = await self._load_part(element_id, rate_limited_retry=False)
        return FetchOutcome(element_id, status)

    async def fetch_part_details(self, element_id: str) -> PartMetadata:
        """
        Request-path lookup of one part.

        Raises UpstreamNotFoundError for an unknown id, RateLimitedError when
        Rebrickable keeps answering 429, UpstreamError for anything else.
        """
        status, part = await self._load_part(element_id, rate_limited_retry=True)
        if status is OutcomeStatus.NOT_FOUND:
            raise UpstreamNotFoundError(f"Part {element_id} not found", status_code=404)
        if status is OutcomeStatus.RATE_LIMITED:
            raise RateLimitedError(f"Rate limited while fetching part {element_id}")
        return part

    async def _load_part(self, element_id: str, rate_limited_retry: bool) -> PartResult:
        return await self.single_flight.do(
            ("part", element_id),
            lambda: self._refresh_part(element_id, rate_limited_retry),
        )

    async def _refresh_part(self, element_id: str, rate_limited_retry: bool) -> PartResult:
        cached = await self.cache.get_part(element_id)
        now = self.clock()

        if cached is not None and cached.invalid:
            logger.debug(f"Part {element_id} is marked invalid, skipping fetch")
            return OutcomeStatus.INVALID, cached
        if cached is not None and cached.is_complete(now):
            return OutcomeStatus.HIT, cached

        response = await self.client.fetch_rebrickable(
            part_colors_url(element_id), rate_limited_retry=rate_limited_retry
        )
        if is_rate_limited(response):
            logger.warning(f"Rate limited fetching colors for {element_id}")
            return OutcomeStatus.RATE_LIMITED, cached

        expires_at = after(now, self.part_expiry)
        if response.status_code == 404:
            logger.info(f"Part {element_id} not found upstream, marking invalid")
            invalid = await self.cache.put_part(
                PartMetadata.invalid_placeholder(element_id, expires_at=expires_at)
            )
            return OutcomeStatus.NOT_FOUND, invalid

        _raise_for_status(response, f"colors for part {element_id}")
        colors = parse_part_colors(read_json(response))

        try:
            name = await self.fetch_part_name(element_id, cached, rate_limited_retry=rate_limited_retry)
        except RateLimitedError:
            logger.warning(f"Rate limited fetching name for {element_id}")
            return OutcomeStatus.RATE_LIMITED, cached

        part = PartMetadata(
            element_id=element_id,
            element_name=name,
            cache_incomplete=not colors,
            available_colors=colors,
            expires_at=expires_at,
            updated_at=now,
        )
        stored = await self.cache.put_part(part)
        if not colors:
            logger.info(f"Part {element_id} returned no colors, stored as incomplete")
            return OutcomeStatus.INCOMPLETE, stored

        logger.debug(f"Stored {len(colors)} colors for part {element_id}")
        return OutcomeStatus.FETCHED, stored

    async def fetch_part_name(
        self,
        element_id: str,
        cached: Optional[PartMetadata] = None,
        rate_limited_retry: bool = True,
    ) -> Optional[str]:
        """Cached part name unless it is the invalid sentinel, else ``parts/{id}/``."""
        if cached is None:
            cached = await self.cache.get_part(element_id)
        if cached is not None and cached.element_name and cached.element_name != INVALID_ELEMENT_NAME:
            return cached.element_name

        response = await self.client.fetch_rebrickable(
            part_url(element_id), rate_limited_retry=rate_limited_retry
        )
        if is_rate_limited(response):
            raise RateLimitedError(
                f"Rate limited while fetching name for {element_id}",
                retry_after=parse_retry_after(response),
            )
        if not response.is_success:
            logger.warning(f"Could not fetch name for part {element_id}: HTTP {response.status_code}")
            return cached.element_name if cached else None
        return parse_part_name(read_json(response))

    # Minifigs

    async def enrich_minifig(self, minifig_id: str) -> FetchOutcome:
        """Background enrichment of one minifig's name and image."""
        status, _ = await self._load_minifig(minifig_id, rate_limited_retry=False)
        return FetchOutcome(minifig_id, status)

    async def fetch_minifig_details(self, minifig_id: str) -> Optional[MinifigMetadata]:
        """Cached minifig metadata or a fresh lookup; None for an unknown id."""
        status, minifig = await self._load_minifig(minifig_id, rate_limited_retry=True)
        if status is OutcomeStatus.RATE_LIMITED:
            raise RateLimitedError(f"Rate limited while fetching minifig {minifig_id}")
        if status is OutcomeStatus.NOT_FOUND:
            return None
        return minifig

    async def _load_minifig(self, minifig_id: str, rate_limited_retry: bool) -> MinifigResult:
        return await self.single_flight.do(
            ("minifig", minifig_id),
            lambda: self._refresh_minifig(minifig_id, rate_limited_retry),
        )

    async def _refresh_minifig(self, minifig_id: str, rate_limited_retry: bool) -> MinifigResult:
        cached = await self.cache.get_minifig(minifig_id)
        now = self.clock()
        if (
            cached is not None
            and cached.minifig_name
            and cached.expires_at is not None
            and cached.expires_at > now
        ):
            return OutcomeStatus.HIT, cached

        response = await self.client.fetch_rebrickable(
            minifig_url(minifig_id), rate_limited_retry=rate_limited_retry
        )
        if is_rate_limited(response):
            logger.warning(f"Rate limited fetching minifig {minifig_id}")
            return OutcomeStatus.RATE_LIMITED, cached
        if response.status_code == 404:
            logger.info(f"Minifig {minifig_id} not found upstream")
            return OutcomeStatus.NOT_FOUND, cached

        _raise_for_status(response, f"minifig {minifig_id}")
        details = parse_minifig_details(read_json(response))
        stored = await self.cache.put_minifig(
            details.model_copy(
                update={
                    "minifig_id_rebrickable": minifig_id,
                    "expires_at": after(now, self.minifig_expiry),
                    "updated_at": now,
                }
            )
        )
        return OutcomeStatus.FETCHED, stored

    async def fetch_minifig_sets(self, minifig_id: str) -> list[str]:
        """Set numbers that contain the minifig."""
        response = await self.client.fetch_rebrickable(minifig_sets_url(minifig_id))
        if response.status_code == 404:
            return []
        _raise_for_status(response, f"sets for minifig {minifig_id}")
        return parse_set_numbers(read_json(response))

    # Sets

    async def fetch_set_parts(self, set_id: str) -> list[dict[str, Any]]:
        """All non-spare inventory lines of a set, following pagination."""
        results: list[dict[str, Any]] = []
        url: Optional[str] = set_parts_url(set_id)
        while url:
            response = await self.client.fetch_rebrickable(url)
            _raise_for_status(response, f"parts for set {set_id}")
            items, url = parse_set_parts_page(read_json(response))
            results.extend(items)
        logger.info(f"Fetched {len(results)} parts for set {set_id}")
        return results
