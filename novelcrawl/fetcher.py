"""
Document Fetcher
================
Loads one URL and returns its HTML, by one of two paths:

- rendered: a page checked out of the ``SessionPool`` for this one load
- static:   ``requests`` in the default executor (no browser)

Both paths map failures onto the crawl error taxonomy (see ``errors.py``).
A session that errors during navigation is discarded, never re-pooled.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import requests
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .errors import TerminalFetchError, TransientNetworkError, raise_for_status
from .run_config import _DEFAULTS
from .session_pool import SessionPool

logger = logging.getLogger(__name__)


class DocumentFetcher:
    """Fetch HTML through the session pool or a plain HTTP session."""

    def __init__(
        self,
        pool: Optional[SessionPool] = None,
        *,
        timeout_seconds: float = _DEFAULTS["timeout_seconds"],
        user_agent: str = _DEFAULTS["user_agent"],
        http_session: Optional[requests.Session] = None,
    ):
        self.pool = pool
        self.timeout_seconds = timeout_seconds
        self._http = http_session or requests.Session()
        self._http.headers.update({
            'User-Agent': user_agent,
            'Accept': 'text/html,application/xhtml+xml',
            'Accept-Language': 'en-US,en;q=0.9',
        })

    async def fetch(self, url: str, render: bool = False) -> str:
        """Return the HTML at ``url``.

        Raises:
            TransientNetworkError / RateLimitedError / TerminalFetchError,
            plus pool errors (ClosedPoolError, PoolExhaustedTimeout,
            PoolStartupError) on the rendered path.
        """
        if render:
            return await self._fetch_rendered(url)
        return await self._fetch_static(url)

    def close(self) -> None:
        self._http.close()

    # ------------------------------------------------------------------
    # Rendered path
    # ------------------------------------------------------------------

    async def _fetch_rendered(self, url: str) -> str:
        if self.pool is None:
            raise RuntimeError("Rendered fetch requested but no SessionPool configured")

        handle = await self.pool.acquire()
        broken = False
        try:
            try:
                status, headers = await handle.navigate(url, timeout_ms=int(self.timeout_seconds * 1000))
                raise_for_status(status, url, headers)
                html = await handle.content()
            except PlaywrightTimeout as e:
                broken = True
                raise TransientNetworkError(f"Navigation timeout after {self.timeout_seconds}s", url) from e
            except PlaywrightError as e:
                broken = True
                raise TransientNetworkError(f"Navigation failed: {e.message}", url) from e
            logger.debug(f"[FETCH] rendered {url[:80]} ({len(html)} bytes)")
            return html
        finally:
            if broken:
                await self.pool.discard(handle)
            else:
                self.pool.release(handle)

    # ------------------------------------------------------------------
    # Static path
    # ------------------------------------------------------------------

    async def _fetch_static(self, url: str) -> str:
        loop = asyncio.get_running_loop()

        def _sync_fetch():
            return self._http.get(url, timeout=self.timeout_seconds)

        try:
            response = await loop.run_in_executor(None, _sync_fetch)
        except requests.Timeout as e:
            raise TransientNetworkError(f"Request timeout after {self.timeout_seconds}s", url) from e
        except (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema) as e:
            raise TerminalFetchError(f"Invalid URL: {e}", url) from e
        except requests.ConnectionError as e:
            raise TransientNetworkError(f"Connection error: {e}", url) from e
        except requests.RequestException as e:
            raise TransientNetworkError(f"Request failed: {e}", url) from e

        raise_for_status(response.status_code, url, response.headers)
        logger.debug(f"[FETCH] static {url[:80]} ({len(response.content)} bytes)")
        return response.text
