"""Process-wide wiring of stores, fetchers and services."""
import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from brickcache.config import config
from brickcache.fetch.bricklink import BricklinkFetcher
from brickcache.fetch.client import FetchClient
from brickcache.fetch.rebrickable import RebrickableFetcher
from brickcache.fetch.single_flight import SingleFlight
from brickcache.jobs.registry import RunRegistry
from brickcache.parse.matching import Matcher
from brickcache.services.enrichment import EnrichmentService
from brickcache.services.prices import PriceService
from brickcache.services.read_path import ReadPath
from brickcache.services.set_import import SetImportService
from brickcache.store.cache_manager import CacheManager
from brickcache.store.metadata import MetadataStore
from brickcache.store.prices import PriceStore
from brickcache.store.records import RecordStore
from brickcache.store.schema import initialize, utcnow

logger = logging.getLogger(__name__)


class AppContext:
    """Builds every collaborator once; use as an async context manager."""

    def __init__(
        self,
        db_path: Optional[Path] = None,
        client: Optional[FetchClient] = None,
        matcher: Optional[Matcher] = None,
        runs_file: Optional[Path] = None,
        export_runs: bool = True,
        sleep: Callable[[float], Any] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db_path = Path(db_path or config.DB_PATH)
        self.metadata_store = MetadataStore(self.db_path)
        self.price_store = PriceStore(self.db_path)
        self.record_store = RecordStore(self.db_path)
        self.cache = CacheManager(self.metadata_store)

        self.client = client or FetchClient()
        self.single_flight = SingleFlight()
        self.rebrickable = RebrickableFetcher(
            self.client, self.cache, single_flight=self.single_flight, clock=clock
        )
        self.bricklink = BricklinkFetcher(
            self.client, self.cache, self.rebrickable, matcher=matcher, single_flight=self.single_flight
        )
        self.prices = PriceService(
            self.price_store, self.cache, self.bricklink, clock=clock, single_flight=self.single_flight
        )
        self.read_path = ReadPath(self.cache, self.price_store, clock=clock)
        self.set_import = SetImportService(self.rebrickable, self.cache)
        self.registry = RunRegistry()
        self.enrichment = EnrichmentService(
            cache=self.cache,
            records=self.record_store,
            rebrickable=self.rebrickable,
            prices=self.prices,
            read_path=self.read_path,
            set_import=self.set_import,
            registry=self.registry,
            runs_file=runs_file,
            export_runs=export_runs,
            sleep=sleep,
            clock=clock,
        )

    async def initialize(self) -> None:
        await initialize(self.db_path)

    async def aclose(self) -> None:
        await self.registry.shutdown()
        await self.client.aclose()

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
