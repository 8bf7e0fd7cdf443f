"""Registry of detached background runs, keyed by batch id."""
import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional

from brickcache.jobs.runner import BatchRunner

logger = logging.getLogger(__name__)


@dataclass
class RunHandle:
    """A spawned run and the task executing it."""

    runner: BatchRunner
    task: asyncio.Task
    created_at: float = field(default_factory=time.time)

    @property
    def batch_id(self) -> str:
        return self.runner.batch_id

    @property
    def status(self) -> str:
        return self.runner.status

    @property
    def done(self) -> bool:
        return self.task.done()

    def summary(self) -> dict:
        return {**self.runner.summary(), "created_at": self.created_at}


class RunRegistry:
    """Spawns runners as asyncio tasks and keeps their handles queryable."""

    def __init__(self, max_finished: int = 100):
        self.max_finished = max_finished
        self._runs: "OrderedDict[str, RunHandle]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._runs)

    def spawn(self, runner: BatchRunner) -> RunHandle:
        """Start a runner in the background and return its handle immediately."""
        task = asyncio.create_task(runner.run(), name=f"enrich-{runner.batch_id}")
        handle = RunHandle(runner=runner, task=task)
        self._runs[runner.batch_id] = handle
        task.add_done_callback(self._on_done)
        self._prune()
        logger.info(f"Spawned {runner.kind} run {runner.batch_id} for {len(runner.ids)} ids")
        return handle

    def _on_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            # Already logged by the runner; retrieving it keeps asyncio quiet
            logger.debug(f"Run task {task.get_name()} ended with {error!r}")

    def _prune(self) -> None:
        finished = [batch_id for batch_id, handle in self._runs.items() if handle.done]
        for batch_id in finished[: max(0, len(finished) - self.max_finished)]:
            del self._runs[batch_id]

    def get(self, batch_id: str) -> Optional[RunHandle]:
        return self._runs.get(batch_id)

    def active(self) -> list[RunHandle]:
        return [handle for handle in self._runs.values() if not handle.done]

    async def wait(self, batch_id: str) -> dict:
        """Wait for a run to finish and return its summary."""
        handle = self._runs[batch_id]
        await asyncio.gather(handle.task, return_exceptions=True)
        return handle.summary()

    async def shutdown(self) -> None:
        """Cancel unfinished runs and wait for them to unwind."""
        active = self.active()
        for handle in active:
            handle.task.cancel()
        if active:
            await asyncio.gather(*(handle.task for handle in active), return_exceptions=True)
            logger.info(f"Cancelled {len(active)} background runs")
