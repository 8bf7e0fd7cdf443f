"""Metrics tracking for enrichment runs."""
import time
import logging
from collections import defaultdict
from typing import Dict, List

from brickcache.parse.models import OutcomeStatus

logger = logging.getLogger(__name__)


class Metrics:
    """Track per-outcome counters, batches and cooldowns for one run."""

    def __init__(self, total: int):
        self.total = total
        self.start_time = time.time()
        self.counters: Dict[str, int] = defaultdict(int)
        self.batch_sizes: List[int] = []
        self.delays: List[float] = []

    def increment(self, key: str, amount: int = 1) -> None:
        """Increment a counter."""
        self.counters[key] += amount

    def record_outcome(self, status: OutcomeStatus) -> None:
        self.increment("processed")
        self.increment(status.value)

    def record_batch(self, size: int) -> None:
        self.batch_sizes.append(size)

    def record_delay(self, seconds: float) -> None:
        self.delays.append(seconds)

    def get_rate(self) -> float:
        """Get current processing rate (items/second)."""
        elapsed = time.time() - self.start_time
        processed = self.counters.get("processed", 0)
        if elapsed > 0:
            return processed / elapsed
        return 0.0

    def report(self, prefix: str = "") -> None:
        """Log current progress."""
        processed = self.counters.get("processed", 0)
        logger.info(
            f"{prefix}Progress: {processed}/{self.total} | "
            f"Fetched: {self.counters.get('fetched', 0)} | "
            f"Hits: {self.counters.get('hit', 0)} | "
            f"Incomplete: {self.counters.get('incomplete', 0)} | "
            f"Invalid: {self.counters.get('invalid', 0) + self.counters.get('not_found', 0)} | "
            f"Rate limited: {self.counters.get('rate_limited', 0)} | "
            f"Failed: {self.counters.get('failed', 0)}"
        )

    def get_summary(self) -> Dict:
        """Get summary statistics."""
        elapsed = time.time() - self.start_time
        summary = {
            "total": self.total,
            "processed": self.counters.get("processed", 0),
            "batches": len(self.batch_sizes),
            "batch_sizes": list(self.batch_sizes),
            "delays": list(self.delays),
            "rate": self.get_rate(),
            "elapsed_seconds": elapsed,
        }
        for status in OutcomeStatus:
            summary[status.value] = self.counters.get(status.value, 0)
        return summary
