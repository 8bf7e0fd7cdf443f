"""Batch orchestrator for background enrichment runs."""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional

from brickcache.config import config
from brickcache.fetch.rebrickable import RebrickableFetcher
from brickcache.jobs.metrics import Metrics
from brickcache.jobs.metrics_exporter import MetricsExporter
from brickcache.parse.models import FetchOutcome, MinifigRef, OutcomeStatus
from brickcache.store.cache_manager import CacheManager
from brickcache.store.records import RecordStore
from brickcache.store.schema import utcnow

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

PENDING = "pending"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"


def new_batch_id() -> str:
    return uuid.uuid4().hex[:12]


def partition(ids: list[str], size: int) -> list[list[str]]:
    """Split ids into consecutive batches of at most ``size``."""
    return [ids[start:start + size] for start in range(0, len(ids), size)]


class BatchRunner:
    """
    Enrich a list of ids in sequential batches.

    Each batch checks the cache for all pending ids at once, applies hits in
    bulk and fetches the misses concurrently. Between batches the runner
    sleeps the standard cooldown, or the long cooldown when any fetch in the
    batch was rate limited. A failing id never aborts its batch.
    """

    kind = "batch"

    def __init__(
        self,
        ids: Iterable[str],
        *,
        batch_id: Optional[str] = None,
        batch_size: Optional[int] = None,
        standard_delay: Optional[float] = None,
        rate_limit_delay: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
        exporter: Optional[MetricsExporter] = None,
    ):
        self.ids = [str(item_id) for item_id in ids]
        self.batch_id = batch_id or new_batch_id()
        self.batch_size = batch_size or config.BATCH_SIZE
        self.standard_delay = config.STANDARD_DELAY if standard_delay is None else standard_delay
        self.rate_limit_delay = config.RATE_LIMIT_DELAY if rate_limit_delay is None else rate_limit_delay
        self.sleep = sleep
        self.clock = clock
        self.exporter = exporter
        self.metrics = Metrics(len(self.ids))
        self.processed: set[str] = set()
        self.outcomes: list[FetchOutcome] = []
        self.status = PENDING
        self.error: Optional[str] = None

    @property
    def log_prefix(self) -> str:
        return f"[Batch {self.batch_id}] "

    # Hooks for concrete runners

    async def check_cache(self, ids: list[str]) -> dict[str, OutcomeStatus]:
        """Ids answered from cache, mapped to their outcome status."""
        return {}

    async def fetch_one(self, item_id: str) -> FetchOutcome:
        raise NotImplementedError

    async def after_fetch(self, outcomes: list[FetchOutcome]) -> None:
        """Called once per batch with the outcomes of fetched ids."""

    # Orchestration

    async def _safe_fetch(self, item_id: str) -> FetchOutcome:
        try:
            return await self.fetch_one(item_id)
        except Exception as e:
            logger.error(f"{self.log_prefix}Failed to enrich {item_id}: {e}")
            return FetchOutcome(item_id, OutcomeStatus.FAILED, error=str(e))

    def _record(self, outcome: FetchOutcome) -> None:
        self.outcomes.append(outcome)
        self.metrics.record_outcome(outcome.status)

    async def process_batch(self, batch: list[str]) -> list[FetchOutcome]:
        """Enrich one batch. Returns the outcomes of ids processed in it."""
        pending = [item_id for item_id in dict.fromkeys(batch) if item_id not in self.processed]
        if not pending:
            return []
        self.processed.update(pending)

        cached = await self.check_cache(pending)
        outcomes = [FetchOutcome(item_id, status) for item_id, status in cached.items()]
        misses = [item_id for item_id in pending if item_id not in cached]
        if cached:
            logger.info(f"{self.log_prefix}{len(cached)} cache hits, {len(misses)} to fetch")

        if misses:
            fetched = await asyncio.gather(*(self._safe_fetch(item_id) for item_id in misses))
            await self.after_fetch(list(fetched))
            outcomes.extend(fetched)

        for outcome in outcomes:
            self._record(outcome)
        return outcomes

    async def run(self) -> dict:
        """Run every batch, then log and export the final report."""
        self.status = RUNNING
        batches = partition(self.ids, self.batch_size)
        logger.info(
            f"{self.log_prefix}Starting {self.kind} run: {len(self.ids)} ids in {len(batches)} batches"
        )

        try:
            for index, batch in enumerate(batches, start=1):
                self.metrics.record_batch(len(batch))
                outcomes = await self.process_batch(batch)
                if not outcomes:
                    logger.info(f"{self.log_prefix}Batch {index}/{len(batches)} already processed, skipping")
                    continue

                self.metrics.report(self.log_prefix)
                if index == len(batches):
                    break

                rate_limited = any(outcome.rate_limited for outcome in outcomes)
                delay = self.rate_limit_delay if rate_limited else self.standard_delay
                if rate_limited:
                    logger.warning(f"{self.log_prefix}Rate limited, cooling down for {delay:.0f}s")
                else:
                    logger.debug(f"{self.log_prefix}Waiting {delay:.0f}s before next batch")
                self.metrics.record_delay(delay)
                await self.sleep(delay)
        except asyncio.CancelledError:
            self.status = FAILED
            self.error = "cancelled"
            logger.warning(f"{self.log_prefix}Run cancelled")
            raise
        except Exception as e:
            self.status = FAILED
            self.error = str(e)
            logger.exception(f"{self.log_prefix}Run failed: {e}")
            raise
        else:
            self.status = COMPLETED
        finally:
            await self._final_report()

        return self.summary()

    def summary(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "kind": self.kind,
            "status": self.status,
            "error": self.error,
            **self.metrics.get_summary(),
        }

    async def _final_report(self) -> None:
        summary = self.metrics.get_summary()
        logger.info("=" * 60)
        logger.info(f"{self.log_prefix}FINAL REPORT ({self.kind})")
        logger.info(f"{self.log_prefix}Status: {self.status}")
        logger.info(f"{self.log_prefix}Processed: {summary['processed']}/{summary['total']}")
        logger.info(f"{self.log_prefix}Fetched: {summary['fetched']} | Hits: {summary['hit']}")
        logger.info(f"{self.log_prefix}Incomplete: {summary['incomplete']}")
        logger.info(f"{self.log_prefix}Invalid: {summary['invalid'] + summary['not_found']}")
        logger.info(f"{self.log_prefix}Rate limited: {summary['rate_limited']} | Failed: {summary['failed']}")
        logger.info(f"{self.log_prefix}Elapsed: {summary['elapsed_seconds']:.1f}s")
        logger.info("=" * 60)

        if self.exporter is not None:
            try:
                await self.exporter.export_summary(self.kind, self.status, summary)
            except OSError as e:
                logger.warning(f"{self.log_prefix}Could not export run summary: {e}")


class PartColorRunner(BatchRunner):
    """Fill in available colours for parts and mirror ``invalid`` onto bricks."""

    kind = "part_colors"

    def __init__(
        self,
        ids: Iterable[str],
        fetcher: RebrickableFetcher,
        cache: CacheManager,
        records: RecordStore,
        table_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(ids, **kwargs)
        self.fetcher = fetcher
        self.cache = cache
        self.records = records
        self.table_id = table_id
        self.owner_id = owner_id

    async def check_cache(self, ids: list[str]) -> dict[str, OutcomeStatus]:
        now = self.clock()
        parts = await self.cache.get_parts(ids)
        usable = [part for part in parts.values() if part.invalid or part.is_complete(now)]
        if usable:
            await self.records.apply_part_metadata(usable, self.table_id, self.owner_id)
        return {
            part.element_id: OutcomeStatus.INVALID if part.invalid else OutcomeStatus.HIT
            for part in usable
        }

    async def fetch_one(self, item_id: str) -> FetchOutcome:
        return await self.fetcher.fetch_part_colors(item_id)

    async def after_fetch(self, outcomes: list[FetchOutcome]) -> None:
        stored = [
            outcome.item_id
            for outcome in outcomes
            if outcome.status
            in (OutcomeStatus.FETCHED, OutcomeStatus.INCOMPLETE, OutcomeStatus.NOT_FOUND, OutcomeStatus.INVALID)
        ]
        if not stored:
            return
        parts = await self.cache.get_parts(stored)
        await self.records.apply_part_metadata(parts.values(), self.table_id, self.owner_id)


class MinifigDetailsRunner(BatchRunner):
    """Fill in names and images for minifigs."""

    kind = "minifig_details"

    def __init__(
        self,
        ids: Iterable[str],
        fetcher: RebrickableFetcher,
        cache: CacheManager,
        records: RecordStore,
        table_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(ids, **kwargs)
        self.fetcher = fetcher
        self.cache = cache
        self.records = records
        self.table_id = table_id
        self.owner_id = owner_id

    async def check_cache(self, ids: list[str]) -> dict[str, OutcomeStatus]:
        now = self.clock()
        minifigs = await self.cache.get_minifigs(ids)
        fresh = [
            minifig
            for minifig in minifigs.values()
            if minifig.minifig_name and minifig.expires_at is not None and minifig.expires_at > now
        ]
        if fresh:
            await self.records.apply_minifig_metadata(fresh, self.table_id, self.owner_id)
        return {minifig.minifig_id_rebrickable: OutcomeStatus.HIT for minifig in fresh}

    async def fetch_one(self, item_id: str) -> FetchOutcome:
        return await self.fetcher.enrich_minifig(item_id)

    async def after_fetch(self, outcomes: list[FetchOutcome]) -> None:
        fetched = [outcome.item_id for outcome in outcomes if outcome.status is OutcomeStatus.FETCHED]
        if not fetched:
            return
        minifigs = await self.cache.get_minifigs(fetched)
        await self.records.apply_minifig_metadata(minifigs.values(), self.table_id, self.owner_id)


class MinifigPriceRunner(BatchRunner):
    """Refresh marketplace prices for minifigs."""

    kind = "minifig_prices"

    def __init__(self, refs: Iterable[MinifigRef], prices, **kwargs: Any):
        refs = list(refs)
        kwargs.setdefault("standard_delay", config.PRICE_STANDARD_DELAY)
        super().__init__([ref.minifig_id_rebrickable for ref in refs], **kwargs)
        self.refs = {ref.minifig_id_rebrickable: ref for ref in refs}
        self.prices = prices

    async def check_cache(self, ids: list[str]) -> dict[str, OutcomeStatus]:
        now = self.clock()
        snapshots = await self.prices.store.get_snapshots(ids)
        return {
            minifig_id: OutcomeStatus.HIT
            for minifig_id, snapshot in snapshots.items()
            if snapshot.is_live(now)
        }

    async def fetch_one(self, item_id: str) -> FetchOutcome:
        return await self.prices.refresh_price(self.refs[item_id])
