"""Coalesce concurrent work for the same key."""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable

logger = logging.getLogger(__name__)


class SingleFlight:
    """In-flight request map.

    The first caller for a key runs the work; callers arriving while it is
    still running await the same future instead of starting a duplicate
    upstream fetch. The key is released as soon as the work finishes.
    """

    def __init__(self):
        self._inflight: Dict[Hashable, asyncio.Future] = {}

    def __contains__(self, key: Hashable) -> bool:
        return key in self._inflight

    def __len__(self) -> int:
        return len(self._inflight)

    async def do(self, key: Hashable, work: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``work`` for ``key`` unless an identical call is in flight."""
        existing = self._inflight.get(key)
        if existing is not None:
            logger.debug(f"Joining in-flight request for {key}")
            return await asyncio.shield(existing)

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            result = await work()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Nobody else may be waiting; mark the exception as retrieved
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._inflight.pop(key, None)
