"""Import a set's inventory, joined with cached colour lists."""
import logging
import time
from typing import Any, Callable

from brickcache.fetch.rebrickable import RebrickableFetcher
from brickcache.parse.models import ColorEntry
from brickcache.parse.rebrickable import DEFAULT_SET_COLOR, set_item_color
from brickcache.store.cache_manager import CacheManager

logger = logging.getLogger(__name__)


class SetImportService:
    """
    Builds the part list of a set for import into a table.

    Parts with a complete cached colour list get it as-is. Other parts get
    the colours observed in the set itself, merged across the set's lines,
    and are flagged ``cacheIncomplete`` so the caller can enqueue them for
    background enrichment.
    """

    def __init__(
        self,
        fetcher: RebrickableFetcher,
        cache: CacheManager,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self.fetcher = fetcher
        self.cache = cache
        self.timer = timer

    async def import_set_parts(self, set_id: str) -> dict[str, Any]:
        start = self.timer()
        items = await self.fetcher.fetch_set_parts(set_id)
        if not items:
            return {"results": [], "incompleteIds": [], "stats": self._stats(0, 0, 0, start)}

        element_ids = list(dict.fromkeys(item["part"]["part_num"] for item in items))
        cached = await self.cache.get_parts(element_ids)
        complete = {
            element_id: part.available_colors
            for element_id, part in cached.items()
            if part.is_complete() and part.available_colors
        }

        observed: dict[str, list[ColorEntry]] = {}
        results = []
        for item in items:
            part = item.get("part") or {}
            color = item.get("color") or {}
            element_id = part["part_num"]
            row = {
                "elementName": part.get("name"),
                "elementId": element_id,
                "elementColor": color.get("name") or DEFAULT_SET_COLOR,
                "elementColorId": str(color.get("id") or 0),
                "quantity": item.get("quantity", 0),
            }

            if element_id in complete:
                colors = complete[element_id]
                row["cacheIncomplete"] = False
            else:
                colors = observed.setdefault(element_id, [])
                entry = set_item_color(item)
                if all(existing.color_id != entry.color_id for existing in colors):
                    colors.append(entry)
                row["cacheIncomplete"] = True

            row["availableColors"] = colors
            results.append(row)

        # Lists are shared per part, so every row sees all observed colours
        for row in results:
            row["availableColors"] = [color.model_dump(by_alias=True) for color in row["availableColors"]]

        with_colors = sum(1 for row in results if not row["cacheIncomplete"])
        logger.info(
            f"Set {set_id}: {with_colors}/{len(results)} lines have cached colors, "
            f"{len(observed)} parts need enrichment"
        )
        return {
            "results": results,
            "incompleteIds": list(observed),
            "stats": self._stats(len(items), len(element_ids), with_colors, start),
        }

    def _stats(self, total: int, unique: int, with_colors: int, start: float) -> dict[str, Any]:
        return {
            "totalParts": total,
            "uniqueParts": unique,
            "partsWithCachedColors": with_colors,
            "processingTimeMs": round((self.timer() - start) * 1000),
        }
