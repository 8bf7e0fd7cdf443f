"""Join user-owned records with shared metadata for display."""
import logging
from datetime import datetime
from typing import Callable, Optional

from brickcache.parse.models import (
    INVALID_ELEMENT_NAME,
    UNKNOWN_MINIFIG_NAME,
    ColorEntry,
    EnrichedBrick,
    EnrichedMinifig,
    PartMetadata,
    UserBrick,
    UserMinifig,
)
from brickcache.store.cache_manager import CacheManager
from brickcache.store.prices import PriceStore
from brickcache.store.schema import utcnow

logger = logging.getLogger(__name__)


def _color_image(part: PartMetadata, color_id: Optional[str]) -> Optional[str]:
    for color in part.available_colors:
        if color.color_id is not None and color.color_id == color_id:
            return color.element_image
    return None


def overlay_brick(record: UserBrick, part: Optional[PartMetadata]) -> EnrichedBrick:
    """One display row for a brick from its record and (optional) metadata."""
    data = record.model_dump()
    if record.invalid:
        data.update(element_color_id=None, element_color=None)
        return EnrichedBrick(
            **data,
            element_name=INVALID_ELEMENT_NAME,
            available_colors=[ColorEntry.sentinel()],
        )

    if part is None:
        return EnrichedBrick(**data, available_colors=[ColorEntry.sentinel()])

    return EnrichedBrick(
        **data,
        element_name=part.element_name,
        element_image=_color_image(part, record.element_color_id),
        available_colors=part.available_colors or [ColorEntry.sentinel()],
        cache_incomplete=part.cache_incomplete,
    )


class ReadPath:
    """Bulk joins of user records with the metadata and price stores."""

    def __init__(self, cache: CacheManager, prices: PriceStore, clock: Callable[[], datetime] = utcnow):
        self.cache = cache
        self.prices = prices
        self.clock = clock

    async def join_bricks_with_metadata(self, records: list[UserBrick]) -> list[EnrichedBrick]:
        parts = await self.cache.get_parts(record.element_id for record in records)
        return [overlay_brick(record, parts.get(record.element_id)) for record in records]

    async def join_minifigs_with_metadata(self, records: list[UserMinifig]) -> list[EnrichedMinifig]:
        """Minifigs with name, image and current price, sorted by name."""
        ids = [record.minifig_id_rebrickable for record in records]
        minifigs = await self.cache.get_minifigs(ids)
        snapshots = await self.prices.get_snapshots(ids)
        now = self.clock()

        enriched = []
        for record in records:
            meta = minifigs.get(record.minifig_id_rebrickable)
            snapshot = snapshots.get(record.minifig_id_rebrickable)
            data = record.model_dump()
            if meta is not None and meta.minifig_id_bricklink and not record.minifig_id_bricklink:
                data["minifig_id_bricklink"] = meta.minifig_id_bricklink
            enriched.append(
                EnrichedMinifig(
                    **data,
                    minifig_name=(meta.minifig_name if meta else None) or UNKNOWN_MINIFIG_NAME,
                    minifig_image=meta.minifig_image if meta else None,
                    price_data=snapshot.price_data if snapshot else None,
                    needs_price_refresh=snapshot is None or not snapshot.is_live(now),
                )
            )

        enriched.sort(key=lambda minifig: minifig.minifig_name.lower())
        return enriched
