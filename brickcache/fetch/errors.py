"""Errors raised by upstream fetchers."""
from typing import Optional


class UpstreamError(RuntimeError):
    """An upstream source answered with something we cannot use."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class UpstreamNotFoundError(UpstreamError):
    """The identifier does not exist upstream."""


class RateLimitedError(UpstreamError):
    """The upstream source throttled us (HTTP 429)."""

    def __init__(self, message: str, retry_after: Optional[float] = None, url: Optional[str] = None):
        super().__init__(message, status_code=429, url=url)
        self.retry_after = retry_after


class MalformedResponseError(UpstreamError):
    """The response body did not have the expected shape."""
