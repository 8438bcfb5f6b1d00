"""
Utility Functions
URL normalization, async retry policy, and text helpers.
"""

import asyncio
import logging
import random
import re
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import parse_qs, urlencode, urljoin, urlparse, urlunparse

from .errors import RateLimitedError, TransientNetworkError

logger = logging.getLogger(__name__)


class URLNormalizer:
    """
    Normalizes chapter and listing URLs so the same chapter linked twice
    (with a fragment, a tracking parameter or a trailing slash) is seen once.
    """

    # Common tracking parameters to remove
    TRACKING_PARAMS = {
        'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
        'fbclid', 'gclid', 'ref', 'mc_cid', 'mc_eid', '_ga', '_gid',
    }

    def __init__(self, remove_tracking_params: bool = True, remove_fragments: bool = True):
        self.remove_tracking_params = remove_tracking_params
        self.remove_fragments = remove_fragments

    def normalize(self, url: str, base_url: str = None) -> Optional[str]:
        """
        Normalize a URL for consistent comparison.

        Args:
            url: The URL to normalize
            base_url: Optional base URL for resolving relative URLs

        Returns:
            Normalized URL string or None if invalid
        """
        if not url:
            return None

        url = url.strip()

        # Skip javascript:, mailto:, tel:, data: URLs
        if url.lower().startswith(('javascript:', 'mailto:', 'tel:', 'data:', '#')):
            return None

        if base_url:
            url = urljoin(base_url, url)

        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            return None

        netloc = parsed.netloc.lower()
        path = re.sub(r'/+', '/', parsed.path or '/')
        if path != '/' and path.endswith('/'):
            path = path.rstrip('/')

        query = parsed.query
        if query and self.remove_tracking_params:
            params = parse_qs(query, keep_blank_values=True)
            filtered = {
                k: v for k, v in params.items()
                if k.lower() not in self.TRACKING_PARAMS
            }
            query = urlencode(filtered, doseq=True)

        fragment = '' if self.remove_fragments else parsed.fragment

        return urlunparse((
            parsed.scheme.lower(), netloc, path, parsed.params, query, fragment,
        ))


class AsyncRetryPolicy:
    """
    Bounded retry with exponential backoff for coroutine calls.

    ``TransientNetworkError`` is retried with the normal backoff;
    ``RateLimitedError`` waits at least ``rate_limit_delay`` (or the
    server's Retry-After, whichever is larger). Anything else propagates
    on the first attempt.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        rate_limit_delay: float = 10.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.rate_limit_delay = rate_limit_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def calculate_delay(self, attempt: int, error: Optional[Exception] = None) -> float:
        """
        Calculate delay for given retry attempt.

        Args:
            attempt: Current attempt number (0-indexed)
            error: The failure that triggered the retry

        Returns:
            Delay in seconds
        """
        delay = self.base_delay * (self.exponential_base ** attempt)

        if isinstance(error, RateLimitedError):
            floor = self.rate_limit_delay
            if error.retry_after is not None:
                floor = max(floor, error.retry_after)
            delay = max(delay, floor)

        delay = min(delay, self.max_delay)

        if self.jitter and delay > 0:
            # Add random jitter (±25%)
            jitter_range = delay * 0.25
            delay += random.uniform(-jitter_range, jitter_range)

        return max(0.0, delay)

    async def run(
        self,
        func: Callable[..., Awaitable[Any]],
        *args,
        description: str = "",
        on_retry: Optional[Callable[[int, Exception], Any]] = None,
        **kwargs,
    ) -> Any:
        """
        Await ``func(*args, **kwargs)`` with retries on transient failures.

        Args:
            func: Coroutine function to call
            description: Label used in log lines (usually the URL)
            on_retry: Called with (attempt_number, error) before each retry

        Raises:
            The last transient error once retries are exhausted, or the first
            non-transient error immediately.
        """
        label = description or getattr(func, '__name__', 'call')
        attempt = 0
        while True:
            try:
                return await func(*args, **kwargs)
            except TransientNetworkError as e:
                if attempt >= self.max_retries:
                    logger.warning(
                        f"[RETRY] {label[:80]} — giving up after "
                        f"{attempt + 1} attempts: {e.message}"
                    )
                    raise
                delay = self.calculate_delay(attempt, e)
                attempt += 1
                logger.info(
                    f"[RETRY] {label[:80]} — {e.message}; "
                    f"attempt {attempt}/{self.max_retries} in {delay:.1f}s"
                )
                if on_retry:
                    on_retry(attempt, e)
                await asyncio.sleep(delay)


def set_query_param(url: str, name: str, value: Any) -> str:
    """Return ``url`` with query parameter ``name`` set to ``value``."""
    parsed = urlparse(url)
    params = parse_qs(parsed.query, keep_blank_values=True)
    params[name] = [str(value)]
    return urlunparse(parsed._replace(query=urlencode(params, doseq=True)))


def get_int_query_param(url: str, name: str) -> Optional[int]:
    """Parse an integer query parameter, or None if absent/malformed."""
    values = parse_qs(urlparse(url).query).get(name)
    if not values:
        return None
    try:
        return int(values[0].strip())
    except ValueError:
        return None


def is_valid_url(url: str) -> bool:
    """Check if URL is valid."""
    try:
        parsed = urlparse(url)
        return all([parsed.scheme in ('http', 'https'), parsed.netloc])
    except ValueError:
        return False


def clean_text(text: str) -> str:
    """Clean and normalize text content."""
    if not text:
        return ""
    return re.sub(r'\s+', ' ', text).strip()
