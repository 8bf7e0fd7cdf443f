"""Public entry points of the metadata caching layer."""
import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from brickcache.fetch.rebrickable import RebrickableFetcher
from brickcache.jobs.metrics_exporter import MetricsExporter
from brickcache.jobs.registry import RunRegistry
from brickcache.jobs.runner import (
    BatchRunner,
    MinifigDetailsRunner,
    MinifigPriceRunner,
    PartColorRunner,
    new_batch_id,
)
from brickcache.parse.models import (
    UNKNOWN_MINIFIG_NAME,
    EnrichedBrick,
    EnrichedMinifig,
    EnrichmentAccepted,
    MinifigRef,
    PartMetadata,
    PriceWithTrends,
    UserBrick,
    UserMinifig,
)
from brickcache.services.prices import PriceService
from brickcache.services.read_path import ReadPath
from brickcache.services.set_import import SetImportService
from brickcache.store.cache_manager import CacheManager
from brickcache.store.records import RecordStore
from brickcache.store.schema import utcnow

logger = logging.getLogger(__name__)


class EnrichmentService:
    """
    Request-path lookups plus detached background runs.

    ``enrich_batch`` and friends return as soon as the run is registered;
    progress is available through ``batch_status``.
    """

    def __init__(
        self,
        *,
        cache: CacheManager,
        records: RecordStore,
        rebrickable: RebrickableFetcher,
        prices: PriceService,
        read_path: ReadPath,
        set_import: SetImportService,
        registry: RunRegistry,
        runs_file: Optional[Path] = None,
        export_runs: bool = True,
        sleep: Callable[[float], Any] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.cache = cache
        self.records = records
        self.rebrickable = rebrickable
        self.prices = prices
        self.read_path = read_path
        self.set_import = set_import
        self.registry = registry
        self.runs_file = runs_file
        self.export_runs = export_runs
        self.sleep = sleep
        self.clock = clock

    def _runner_kwargs(self) -> dict[str, Any]:
        batch_id = new_batch_id()
        exporter = MetricsExporter(batch_id, self.runs_file) if self.export_runs else None
        return {"batch_id": batch_id, "sleep": self.sleep, "clock": self.clock, "exporter": exporter}

    def _spawn(self, runner: BatchRunner) -> EnrichmentAccepted:
        self.registry.spawn(runner)
        return EnrichmentAccepted(batch_id=runner.batch_id, count=len(runner.ids))

    # Background runs

    def enrich_batch(
        self, ids: Iterable[str], table_id: Optional[str] = None, owner_id: Optional[str] = None
    ) -> EnrichmentAccepted:
        """Fill in colours for parts in the background."""
        runner = PartColorRunner(
            ids, self.rebrickable, self.cache, self.records, table_id, owner_id, **self._runner_kwargs()
        )
        return self._spawn(runner)

    def enrich_minifigs(
        self, ids: Iterable[str], table_id: Optional[str] = None, owner_id: Optional[str] = None
    ) -> EnrichmentAccepted:
        """Fill in names and images for minifigs in the background."""
        runner = MinifigDetailsRunner(
            ids, self.rebrickable, self.cache, self.records, table_id, owner_id, **self._runner_kwargs()
        )
        return self._spawn(runner)

    def refresh_prices(self, refs: Iterable[MinifigRef]) -> EnrichmentAccepted:
        return self._spawn(MinifigPriceRunner(refs, self.prices, **self._runner_kwargs()))

    async def refresh_expired_prices(self) -> EnrichmentAccepted:
        """Re-price every minifig whose snapshot expired."""
        expired = await self.prices.list_expired()
        minifigs = await self.cache.get_minifigs(expired)
        refs = []
        for minifig_id in expired:
            meta = minifigs.get(minifig_id)
            refs.append(
                MinifigRef(
                    minifig_id_rebrickable=minifig_id,
                    minifig_id_bricklink=meta.minifig_id_bricklink if meta else None,
                    minifig_name=meta.minifig_name if meta else None,
                )
            )
        logger.info(f"Found {len(refs)} expired price entries to update")
        return self.refresh_prices(refs)

    def batch_status(self, batch_id: str) -> Optional[dict]:
        handle = self.registry.get(batch_id)
        return handle.summary() if handle else None

    # Request path

    async def enrich_one(self, element_id: str) -> PartMetadata:
        """Colours for one part now. Upstream errors propagate."""
        return await self.rebrickable.fetch_part_details(element_id)

    async def get_part_metadata(self, element_id: str) -> Optional[PartMetadata]:
        return await self.cache.get_part(element_id)

    async def get_minifig_price_with_trend(self, ref: MinifigRef) -> PriceWithTrends:
        return await self.prices.get_latest_price(ref)

    async def join_bricks_with_metadata(self, records: list[UserBrick]) -> list[EnrichedBrick]:
        return await self.read_path.join_bricks_with_metadata(records)

    async def join_minifigs_with_metadata(self, records: list[UserMinifig]) -> list[EnrichedMinifig]:
        return await self.read_path.join_minifigs_with_metadata(records)

    # User records

    async def add_bricks(
        self, table_id: str, owner_id: str, bricks: list[dict[str, Any]]
    ) -> tuple[list[UserBrick], EnrichmentAccepted]:
        """Store bare brick records and enrich their parts in the background."""
        records = [UserBrick(**brick, table_id=table_id, owner_id=owner_id) for brick in bricks]
        await self.records.add_bricks(records)
        ids = list(dict.fromkeys(record.element_id for record in records))
        return records, self.enrich_batch(ids, table_id, owner_id)

    async def add_minifigs(
        self, table_id: str, owner_id: str, minifigs: list[dict[str, Any]]
    ) -> tuple[list[UserMinifig], EnrichmentAccepted]:
        records = [UserMinifig(**minifig, table_id=table_id, owner_id=owner_id) for minifig in minifigs]
        await self.records.add_minifigs(records)
        ids = list(dict.fromkeys(record.minifig_id_rebrickable for record in records))
        return records, self.enrich_minifigs(ids, table_id, owner_id)

    async def list_bricks(self, table_id: str, owner_id: Optional[str] = None) -> list[EnrichedBrick]:
        records = await self.records.list_bricks(table_id, owner_id)
        return await self.read_path.join_bricks_with_metadata(records)

    async def list_minifigs(
        self, table_id: str, owner_id: Optional[str] = None, refresh_prices: bool = True
    ) -> list[EnrichedMinifig]:
        """Minifigs of a table; stale prices are refreshed in the background."""
        records = await self.records.list_minifigs(table_id, owner_id)
        minifigs = await self.read_path.join_minifigs_with_metadata(records)

        # The read path shows a placeholder name for minifigs without metadata
        stale = {
            minifig.minifig_id_rebrickable: MinifigRef(
                minifig_id_rebrickable=minifig.minifig_id_rebrickable,
                minifig_id_bricklink=minifig.minifig_id_bricklink,
                minifig_name=None if minifig.minifig_name == UNKNOWN_MINIFIG_NAME else minifig.minifig_name,
                minifig_image=minifig.minifig_image,
            )
            for minifig in minifigs
            if minifig.needs_price_refresh
        }
        if refresh_prices and stale:
            accepted = self.refresh_prices(stale.values())
            logger.info(f"Started price refresh {accepted.batch_id} for {len(stale)} minifigs")
        return minifigs

    async def update_brick(self, uuid: str, changes: dict[str, Any]) -> Optional[UserBrick]:
        """
        Update a brick. A new ``element_id`` is checked against the cache:
        known-invalid ids are flagged at once, unknown ones are re-enriched.
        """
        updated = await self.records.update_brick(uuid, changes)
        if updated is None or "element_id" not in changes:
            return updated

        part = await self.cache.get_part(updated.element_id)
        if part is not None and part.invalid:
            return await self.records.update_brick(uuid, {"invalid": True})
        if part is None or not part.is_complete(self.clock()):
            self.enrich_batch([updated.element_id], updated.table_id, updated.owner_id)
        return updated

    async def delete_brick(self, uuid: str) -> bool:
        return await self.records.delete_brick(uuid)

    async def import_set(
        self,
        set_id: str,
        table_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        enrich: bool = True,
    ) -> dict[str, Any]:
        """Set inventory with colours; incomplete parts are enriched in the background."""
        result = await self.set_import.import_set_parts(set_id)
        if enrich and result["incompleteIds"]:
            accepted = self.enrich_batch(result["incompleteIds"], table_id, owner_id)
            result["batchId"] = accepted.batch_id
        return result
