"""In-memory TTL layer over the persistent metadata store."""
import logging
import time
from typing import Any, Callable, Iterable, Optional

from brickcache.config import config
from brickcache.parse.models import MinifigMetadata, PartMetadata
from brickcache.store.metadata import MetadataStore

logger = logging.getLogger(__name__)


class CacheManager:
    """
    Read-through, write-through cache for part and minifig metadata.

    One instance per process. Entries live in memory for ``ttl`` seconds and
    are always backed by the store, so a restart only loses the memory layer.
    """

    def __init__(
        self,
        store: MetadataStore,
        ttl: float = config.MEMORY_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.ttl = ttl
        self.clock = clock
        self._memory: dict[tuple[str, str], tuple[float, Any]] = {}
        self.hits = 0
        self.misses = 0

    def _get_memory(self, kind: str, key: str) -> Optional[Any]:
        entry = self._memory.get((kind, key))
        if entry is None:
            return None
        stored_at, value = entry
        if self.clock() - stored_at > self.ttl:
            del self._memory[(kind, key)]
            return None
        return value

    def _put_memory(self, kind: str, key: str, value: Any) -> None:
        self._memory[(kind, key)] = (self.clock(), value)

    def invalidate(self, kind: str, key: str) -> None:
        self._memory.pop((kind, key), None)

    def clear(self) -> None:
        self._memory.clear()

    async def _get_many(self, kind: str, keys: Iterable[str], load) -> dict[str, Any]:
        found: dict[str, Any] = {}
        missing = []
        for key in dict.fromkeys(keys):
            value = self._get_memory(kind, key)
            if value is None:
                missing.append(key)
            else:
                found[key] = value
        self.hits += len(found)

        if missing:
            loaded = await load(missing)
            for key, value in loaded.items():
                self._put_memory(kind, key, value)
            found.update(loaded)
            self.misses += len(missing) - len(loaded)
            self.hits += len(loaded)
        return found

    async def get_parts(self, element_ids: Iterable[str]) -> dict[str, PartMetadata]:
        return await self._get_many("part", element_ids, self.store.get_parts)

    async def get_part(self, element_id: str) -> Optional[PartMetadata]:
        parts = await self.get_parts([element_id])
        return parts.get(element_id)

    async def put_part(self, part: PartMetadata) -> PartMetadata:
        stored = await self.store.upsert_part(part)
        self._put_memory("part", stored.element_id, stored)
        return stored

    async def get_minifigs(self, minifig_ids: Iterable[str]) -> dict[str, MinifigMetadata]:
        return await self._get_many("minifig", minifig_ids, self.store.get_minifigs)

    async def get_minifig(self, minifig_id: str) -> Optional[MinifigMetadata]:
        minifigs = await self.get_minifigs([minifig_id])
        return minifigs.get(minifig_id)

    async def put_minifig(self, minifig: MinifigMetadata) -> MinifigMetadata:
        stored = await self.store.upsert_minifig(minifig)
        self._put_memory("minifig", stored.minifig_id_rebrickable, stored)
        return stored

    async def set_minifig_bricklink_id(
        self, minifig_id: str, bricklink_id: str, minifig_name: Optional[str] = None
    ) -> None:
        await self.store.set_minifig_bricklink_id(minifig_id, bricklink_id, minifig_name)
        self.invalidate("minifig", minifig_id)

    def stats(self) -> dict:
        return {"memory_entries": len(self._memory), "hits": self.hits, "misses": self.misses}
