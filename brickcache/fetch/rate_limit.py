"""Token-bucket rate limiter for outbound catalog requests."""
import asyncio
import logging
import math
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple

logger = logging.getLogger(__name__)

Task = Callable[[], Awaitable[Any]]


class RateLimiter:
    """Queue tasks and run them no faster than the bucket allows.

    The bucket holds up to ``burst_size`` tokens and is refilled lazily at
    ``rate_per_second`` whenever the queue pump wakes up. Each dispatched task
    consumes one token. Tasks run one at a time in FIFO order and are never
    dropped, only delayed.
    """

    def __init__(
        self,
        rate_per_second: float = 1.0,
        burst_size: int = 5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")
        self.rate_per_second = rate_per_second
        self.burst_size = burst_size
        self.tokens = float(burst_size)
        self._clock = clock
        self._sleep = sleep
        self._last_refill = clock()
        self._pending: Deque[Tuple[Task, asyncio.Future]] = deque()
        self._processing = False
        self._pump: Optional[asyncio.Task] = None

    @property
    def wait_interval(self) -> float:
        """Seconds to wait when the bucket is empty."""
        return math.ceil(1000 / self.rate_per_second) / 1000

    @property
    def queued(self) -> int:
        """Number of tasks waiting for a token."""
        return len(self._pending)

    def _refill_tokens(self) -> None:
        """Add the tokens earned since the last refill."""
        now = self._clock()
        new_tokens = math.floor((now - self._last_refill) * self.rate_per_second)
        if new_tokens > 0:
            self.tokens = min(self.tokens + new_tokens, self.burst_size)
            self._last_refill = now

    async def _process_queue(self) -> None:
        """Drain the queue, one token per task."""
        try:
            while self._pending:
                self._refill_tokens()

                if self.tokens < 1:
                    await self._sleep(self.wait_interval)
                    continue

                task, future = self._pending.popleft()
                self.tokens -= 1

                try:
                    result = await task()
                except Exception as e:
                    if not future.done():
                        future.set_exception(e)
                else:
                    if not future.done():
                        future.set_result(result)
        finally:
            self._processing = False

    async def enqueue(self, task: Task) -> Any:
        """Run ``task`` once a token is available and return its result."""
        future = asyncio.get_running_loop().create_future()
        self._pending.append((task, future))
        if not self._processing:
            self._processing = True
            self._pump = asyncio.create_task(self._process_queue())
        return await future
