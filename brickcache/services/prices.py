"""Price freshness, history archiving and trend calculation."""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx

from brickcache.config import config
from brickcache.fetch.bricklink import BricklinkFetcher
from brickcache.fetch.errors import UpstreamError
from brickcache.fetch.single_flight import SingleFlight
from brickcache.parse.models import (
    PRICE_FIELDS,
    FetchOutcome,
    MinifigPriceSnapshot,
    MinifigRef,
    OutcomeStatus,
    PriceData,
    PriceHistoryEntry,
    PriceTrends,
    PriceWithTrends,
    Trend,
)
from brickcache.store.cache_manager import CacheManager
from brickcache.store.prices import PriceStore
from brickcache.store.schema import after, utcnow

logger = logging.getLogger(__name__)

HISTORY_RETENTION_FACTOR = 5

RefreshResult = tuple[OutcomeStatus, Optional[PriceData]]


def calculate_trend(current: Optional[float], previous: Optional[float]) -> Trend:
    """Direction and absolute percentage change from ``previous`` to ``current``."""
    if current is None or previous is None or previous == 0:
        return Trend()
    diff = current - previous
    if diff == 0:
        return Trend()
    return Trend(
        direction="up" if diff > 0 else "down",
        percentage=abs(round(diff / previous * 100, 1)),
    )


def default_price() -> PriceWithTrends:
    return PriceWithTrends()


class PriceService:
    """
    Serves minifig prices from the live snapshot while it is fresh, and
    refreshes it from BrickLink otherwise.

    Every refresh archives the previous snapshot into history first, unless
    the newest history row is younger than half the price expiry window.
    """

    def __init__(
        self,
        store: PriceStore,
        cache: CacheManager,
        bricklink: BricklinkFetcher,
        clock: Callable[[], datetime] = utcnow,
        expiry: float = config.CACHE_EXPIRY_PRICE,
        single_flight: Optional[SingleFlight] = None,
    ):
        self.store = store
        self.cache = cache
        self.bricklink = bricklink
        self.clock = clock
        self.expiry = expiry
        self.single_flight = single_flight or SingleFlight()

    async def is_expired(self, minifig_id: str) -> bool:
        """True when there is no snapshot, or it is flagged or past expiry."""
        snapshot = await self.store.get_snapshot(minifig_id)
        return snapshot is None or not snapshot.is_live(self.clock())

    async def list_expired(self) -> list[str]:
        return await self.store.list_expired(self.clock())

    async def get_latest_price(self, ref: MinifigRef) -> PriceWithTrends:
        """Current price with trends. Never raises; failures yield null prices."""
        try:
            snapshot = await self.store.get_snapshot(ref.minifig_id_rebrickable)
            if snapshot is not None and snapshot.is_live(self.clock()):
                price_data = snapshot.price_data
            else:
                status, price_data = await self._refresh(ref)
                if price_data is None:
                    logger.info(
                        f"No fresh price for {ref.minifig_id_rebrickable} ({status.value}), returning defaults"
                    )
                    return default_price()

            trends = await self.calculate_trends(ref.minifig_id_rebrickable, price_data)
            return PriceWithTrends(**price_data.model_dump(), trends=trends)
        except Exception as e:
            logger.error(f"Error getting latest price for {ref.minifig_id_rebrickable}: {e}")
            return default_price()

    async def refresh_price(self, ref: MinifigRef) -> FetchOutcome:
        """Fetch and store a fresh price regardless of the current snapshot."""
        status, _ = await self._refresh(ref)
        return FetchOutcome(ref.minifig_id_rebrickable, status)

    async def _refresh(self, ref: MinifigRef) -> RefreshResult:
        return await self.single_flight.do(
            ("price", ref.minifig_id_rebrickable), lambda: self._fetch_and_store(ref)
        )

    async def _fetch_and_store(self, ref: MinifigRef) -> RefreshResult:
        minifig_id = ref.minifig_id_rebrickable
        try:
            bricklink_id = ref.minifig_id_bricklink
            if not bricklink_id:
                bricklink_id = await self.bricklink.resolve_bricklink_id(minifig_id, ref.minifig_name)
            if not bricklink_id:
                logger.warning(f"No BrickLink id for {minifig_id}, cannot price it")
                return OutcomeStatus.NOT_FOUND, None

            result = await self.bricklink.fetch_price(bricklink_id)
        except (UpstreamError, httpx.HTTPError) as e:
            logger.error(f"Failed to fetch price for {minifig_id}: {e}")
            return OutcomeStatus.FAILED, None

        if result.rate_limited:
            return OutcomeStatus.RATE_LIMITED, None
        if not result.ok:
            return OutcomeStatus.NOT_FOUND, None

        now = self.clock()
        await self.archive_current(minifig_id)
        await self.store.upsert_snapshot(
            MinifigPriceSnapshot(
                minifig_id_rebrickable=minifig_id,
                price_data=result.price_data,
                is_expired=False,
                expires_at=after(now, self.expiry),
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(f"Updated price data for {minifig_id}")
        return OutcomeStatus.FETCHED, result.price_data

    async def archive_current(self, minifig_id: str) -> bool:
        """
        Copy the live snapshot into history and flag it expired.

        Skipped when there is no snapshot or when the newest history row is
        younger than half the price expiry window. Returns True if archived.
        """
        snapshot = await self.store.get_snapshot(minifig_id)
        if snapshot is None:
            return False

        now = self.clock()
        latest = await self.store.latest_history(minifig_id)
        min_gap = timedelta(seconds=self.expiry / 2)
        if latest is not None and now - latest.created_at < min_gap:
            hours = (now - latest.created_at).total_seconds() / 3600
            logger.debug(f"Skipping history entry for {minifig_id}, last entry {hours:.1f}h ago")
            return False

        await self.store.append_history(
            PriceHistoryEntry(
                minifig_id_rebrickable=minifig_id,
                price_data=snapshot.price_data,
                created_at=now,
                expires_at=after(now, self.expiry * HISTORY_RETENTION_FACTOR),
            )
        )
        await self.store.mark_expired(minifig_id)
        logger.info(f"Archived price data for {minifig_id} to history")
        return True

    async def calculate_trends(self, minifig_id: str, current: PriceData) -> PriceTrends:
        """Compare ``current`` against the newest history row."""
        previous = await self.store.latest_history(minifig_id)
        if previous is None:
            return PriceTrends()

        trends = {
            field: calculate_trend(getattr(current, field), getattr(previous.price_data, field))
            for field in PRICE_FIELDS
        }
        return PriceTrends(**trends, last_updated=previous.created_at)
