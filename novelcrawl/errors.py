"""
Crawl Error Taxonomy
====================
Every failure the engine can report derives from ``CrawlError``.

Retry policy by type:
    TransientNetworkError  — retried (exponential backoff)
    RateLimitedError       — retried (longer backoff, honours Retry-After)
    TerminalFetchError     — never retried; recorded on the chapter only
    PoolExhaustedTimeout   — fatal for the crawl
    ClosedPoolError        — fatal for the crawl
    PoolStartupError       — fatal for the crawl
    UnsupportedSiteError   — fatal, raised before any network access
"""

from __future__ import annotations

from typing import Mapping, Optional

# HTTP status codes worth another attempt
RETRYABLE_STATUS_CODES = frozenset({408, 500, 502, 503, 504})


class CrawlError(Exception):
    """Base class for all crawl failures."""

    def __init__(self, message: str, url: str = ""):
        super().__init__(message)
        self.message = message
        self.url = url

    def __str__(self) -> str:
        if self.url:
            return f"{self.message} ({self.url})"
        return self.message


class TransientNetworkError(CrawlError):
    """Timeout, connection reset, 5xx — worth retrying."""


class RateLimitedError(TransientNetworkError):
    """The remote site explicitly told us to slow down."""

    def __init__(self, message: str, url: str = "", retry_after: Optional[float] = None):
        super().__init__(message, url)
        self.retry_after = retry_after


class TerminalFetchError(CrawlError):
    """404, or a page that loaded but carried no usable content."""

    def __init__(self, message: str, url: str = "", status: Optional[int] = None):
        super().__init__(message, url)
        self.status = status


class PoolExhaustedTimeout(CrawlError):
    """No session became available within the acquire timeout."""


class ClosedPoolError(CrawlError):
    """The session pool was shut down."""


class PoolStartupError(CrawlError):
    """The shared browser or a new page could not be started."""


class UnsupportedSiteError(CrawlError):
    """No strategy is registered for the URL's host."""


class SiteConfigError(CrawlError):
    """A site configuration file could not be parsed."""


def _parse_retry_after(headers: Optional[Mapping[str, str]]) -> Optional[float]:
    if not headers:
        return None
    for key, value in headers.items():
        if key.lower() == "retry-after":
            try:
                return max(0.0, float(value))
            except (TypeError, ValueError):
                return None
    return None


def raise_for_status(
    status: Optional[int],
    url: str,
    headers: Optional[Mapping[str, str]] = None,
) -> None:
    """Map an HTTP status code onto the error taxonomy.

    Args:
        status:  Response status, or None when no response was received.
        url:     The requested URL (for error context).
        headers: Response headers, used for ``Retry-After``.

    Raises:
        RateLimitedError, TransientNetworkError or TerminalFetchError.
    """
    if status is None:
        raise TransientNetworkError("No response received", url)
    if status < 400:
        return

    retry_after = _parse_retry_after(headers)
    if status == 429 or (status == 503 and retry_after is not None):
        raise RateLimitedError(f"HTTP {status} (rate limited)", url, retry_after=retry_after)
    if status in RETRYABLE_STATUS_CODES:
        raise TransientNetworkError(f"HTTP {status}", url)
    raise TerminalFetchError(f"HTTP {status}", url, status=status)
