"""HTTP client with timeouts, retries and rate limiting."""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
)

from brickcache.config import config
from brickcache.fetch.endpoints import rebrickable_url
from brickcache.fetch.errors import MalformedResponseError, UpstreamError
from brickcache.fetch.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (httpx.TimeoutException, httpx.NetworkError)

OnRetry = Callable[[int, float, Optional[BaseException]], None]
Sleep = Callable[[float], Awaitable[None]]


def is_rate_limited(response: Any) -> bool:
    """Check if a response is an HTTP 429."""
    return isinstance(response, httpx.Response) and response.status_code == 429


def parse_retry_after(response: httpx.Response) -> Optional[float]:
    """Seconds from a Retry-After header, if it holds an integer."""
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(int(value.strip()))
    except ValueError:
        return None


def _backoff(retry_delay: float) -> Callable[[RetryCallState], float]:
    """Retry-After when the server sent one, else exponential backoff."""

    def wait(retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is not None and not outcome.failed:
            retry_after = parse_retry_after(outcome.result())
            if retry_after is not None:
                return retry_after
        return retry_delay * 2 ** (retry_state.attempt_number - 1)

    return wait


def _log_retry(url: str, retries: int, on_retry: Optional[OnRetry]) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        attempt = retry_state.attempt_number
        error = None
        if retry_state.outcome.failed:
            error = retry_state.outcome.exception()
            logger.warning(
                f"Fetch error for {url} ({error!r}), retrying in {delay:.1f}s, attempt {attempt}/{retries}"
            )
        else:
            logger.warning(
                f"Rate limited (429) on {url}, retrying in {delay:.1f}s, attempt {attempt}/{retries}"
            )
        if on_retry:
            on_retry(attempt, delay, error)

    return before_sleep


def _final_outcome(retry_state: RetryCallState) -> httpx.Response:
    # Last 429 response is returned as-is; a last exception is re-raised
    return retry_state.outcome.result()


async def fetch_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    method: str = "GET",
    headers: Optional[dict[str, str]] = None,
    params: Optional[dict[str, Any]] = None,
    retries: int = 3,
    retry_delay: float = 1.0,
    timeout: float = 8.0,
    rate_limited_retry: bool = True,
    rate_limiter: Optional[RateLimiter] = None,
    on_retry: Optional[OnRetry] = None,
    sleep: Sleep = asyncio.sleep,
) -> httpx.Response:
    """
    Fetch a URL, retrying network errors, timeouts and (optionally) 429s.

    Any other status code is returned to the caller untouched. Cancellation
    by the caller is never retried.
    """
    request_headers = {"User-Agent": config.USER_AGENT, **(headers or {})}

    async def send() -> httpx.Response:
        return await client.request(
            method, url, headers=request_headers, params=params, timeout=timeout
        )

    async def attempt() -> httpx.Response:
        if rate_limiter is not None:
            return await rate_limiter.enqueue(send)
        return await send()

    retry = retry_if_exception_type(RETRYABLE_ERRORS)
    if rate_limited_retry:
        retry = retry | retry_if_result(is_rate_limited)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(retries + 1),
        wait=_backoff(retry_delay),
        retry=retry,
        before_sleep=_log_retry(url, retries, on_retry),
        retry_error_callback=_final_outcome,
        sleep=sleep,
    )
    return await retrying(attempt)


def read_json(response: httpx.Response) -> Any:
    """Decode a JSON body or raise MalformedResponseError."""
    try:
        return response.json()
    except ValueError as e:
        raise MalformedResponseError(
            f"Invalid JSON from {response.request.url}: {e}",
            status_code=response.status_code,
            url=str(response.request.url),
        ) from e


class FetchClient:
    """HTTP client with rate limiting, retries and upstream credentials."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
        api_key: Optional[str] = None,
        retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        if client is None:
            # Configure connection pool
            limits = httpx.Limits(
                max_connections=20,
                max_keepalive_connections=10,
            )
            client = httpx.AsyncClient(
                http2=True,
                timeout=config.TIMEOUT,
                follow_redirects=True,
                limits=limits,
            )
        self.client = client
        self.rate_limiter = rate_limiter or RateLimiter(config.RATE_PER_SECOND, config.BURST_SIZE)
        self.api_key = api_key if api_key is not None else config.REBRICKABLE_API_KEY
        self.retries = config.MAX_RETRIES if retries is None else retries
        self.retry_delay = config.RETRY_DELAY if retry_delay is None else retry_delay
        self.timeout = config.TIMEOUT if timeout is None else timeout
        self.sleep = sleep
        self.retry_count = 0
        self.backoff_time_total = 0.0

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def _record_retry(self, attempt: int, delay: float, error: Optional[BaseException]) -> None:
        self.retry_count += 1
        self.backoff_time_total += delay

    async def fetch(
        self,
        url: str,
        *,
        headers: Optional[dict[str, str]] = None,
        params: Optional[dict[str, Any]] = None,
        retries: Optional[int] = None,
        timeout: Optional[float] = None,
        rate_limited_retry: bool = True,
        use_rate_limiter: bool = False,
    ) -> httpx.Response:
        """Fetch a URL with this client's retry settings."""
        return await fetch_with_retry(
            self.client,
            url,
            headers=headers,
            params=params,
            retries=self.retries if retries is None else retries,
            retry_delay=self.retry_delay,
            timeout=self.timeout if timeout is None else timeout,
            rate_limited_retry=rate_limited_retry,
            rate_limiter=self.rate_limiter if use_rate_limiter else None,
            on_retry=self._record_retry,
            sleep=self.sleep,
        )

    async def fetch_rebrickable(self, path: str, **kwargs: Any) -> httpx.Response:
        """Fetch a Rebrickable API path through the shared rate limiter."""
        if not self.api_key:
            raise UpstreamError("Rebrickable API key is not configured")
        headers = {"Authorization": f"key {self.api_key}", **kwargs.pop("headers", {})}
        kwargs.setdefault("use_rate_limiter", True)
        return await self.fetch(rebrickable_url(path), headers=headers, **kwargs)

    async def fetch_bricklink(self, url: str, **kwargs: Any) -> httpx.Response:
        """Fetch a BrickLink page or AJAX endpoint."""
        kwargs.setdefault("timeout", max(self.timeout, 10.0))
        return await self.fetch(url, **kwargs)
