"""
Pagination Crawler
==================
Walks a novel's paginated chapter listing and returns every chapter URL
in reading order.

Flow:
    1. ``resolve``  — fetch listing page 1, read the terminal page N from
                      its pagination control, keep page 1's chapter links
    2. ``collect``  — fetch pages 2..N with bounded parallelism; a resumed
                      crawl starts at the last page it saw and keeps the
                      chapter URLs it already has from earlier pages
    3. merge        — page order, then document order; first occurrence of
                      a (normalised) URL wins

A listing page that still fails after retries contributes no URLs and is
recorded in ``failed_pages``; the crawl carries on.  Pool errors
(``PoolExhaustedTimeout``, ``ClosedPoolError``, ``PoolStartupError``)
propagate.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from .errors import TerminalFetchError, TransientNetworkError
from .models import ProgressEvent
from .monitor import FetchMonitor
from .strategies.base_strategy import SiteStrategy
from .utils import AsyncRetryPolicy, URLNormalizer

logger = logging.getLogger(__name__)


@dataclass
class CrawlState:
    """Transient state of one pagination walk."""
    current_page: int = 1
    terminal_page: Optional[int] = None
    page_urls: Dict[int, List[str]] = field(default_factory=dict)
    failed_pages: List[int] = field(default_factory=list)

    def ordered_urls(self) -> List[str]:
        """Merge pages in page order, dropping repeats (first one wins)."""
        normalizer = URLNormalizer()
        seen = set()
        ordered: List[str] = []
        for page in sorted(self.page_urls):
            for url in self.page_urls[page]:
                key = normalizer.normalize(url) or url
                if key in seen:
                    continue
                seen.add(key)
                ordered.append(url)
        return ordered


@dataclass
class PaginationResult:
    chapter_urls: List[str]
    last_page_url: str
    terminal_page: int
    failed_pages: List[int] = field(default_factory=list)


class PaginationCrawler:
    """Collect chapter URLs across all listing pages of one novel."""

    def __init__(
        self,
        retry_policy: Optional[AsyncRetryPolicy] = None,
        max_parallel: int = 1,
        monitor: Optional[FetchMonitor] = None,
        progress_callback: Optional[Callable[[ProgressEvent], None]] = None,
    ):
        if max_parallel < 1:
            raise ValueError(f"max_parallel must be >= 1 (got {max_parallel})")
        self.retry_policy = retry_policy or AsyncRetryPolicy()
        self.max_parallel = max_parallel
        self.monitor = monitor
        self.progress_callback = progress_callback

    async def crawl(self, strategy: SiteStrategy, toc_url: str) -> PaginationResult:
        state = await self.resolve(strategy, toc_url)
        return await self.collect(strategy, toc_url, state)

    async def resolve(self, strategy: SiteStrategy, toc_url: str) -> CrawlState:
        """Fetch listing page 1 and determine the terminal page number."""
        state = CrawlState(current_page=1)
        url = strategy.listing_page_url(toc_url, 1)
        soup = await self._fetch_page(strategy, url, 1, state)
        if soup is None:
            state.terminal_page = 1
            return state

        state.terminal_page = strategy.resolve_terminal_page_number(soup)
        state.page_urls[1] = strategy.extract_chapter_urls_from_page(soup, url)
        logger.info(
            f"[PAGINATION] {strategy.key}: {state.terminal_page} listing page(s), "
            f"{len(state.page_urls[1])} link(s) on page 1"
        )
        self._emit(ProgressEvent(
            kind="listing_page", message="Listing page 1 loaded",
            current=1, total=state.terminal_page, url=url,
        ))
        return state

    async def collect(
        self,
        strategy: SiteStrategy,
        toc_url: str,
        state: CrawlState,
        known_urls: Sequence[str] = (),
        start_page: int = 2,
    ) -> PaginationResult:
        """Fetch pages start_page..N (bounded) and merge every page's links in order.

        ``known_urls`` are chapter URLs already read from the pages before
        ``start_page`` on an earlier crawl; they are merged ahead of the
        pages fetched now.
        """
        terminal = state.terminal_page or 1
        if known_urls:
            state.page_urls[0] = list(known_urls)
        semaphore = asyncio.Semaphore(self.max_parallel)

        async def _one(page: int) -> None:
            async with semaphore:
                url = strategy.listing_page_url(toc_url, page)
                soup = await self._fetch_page(strategy, url, page, state)
                if soup is None:
                    return
                state.page_urls[page] = strategy.extract_chapter_urls_from_page(soup, url)
                state.current_page = max(state.current_page, page)
                self._emit(ProgressEvent(
                    kind="listing_page", message=f"Listing page {page} loaded",
                    current=page, total=terminal, url=url,
                ))

        tasks = [asyncio.create_task(_one(page)) for page in range(max(2, start_page), terminal + 1)]
        try:
            if tasks:
                await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)

        state.failed_pages.sort()
        urls = state.ordered_urls()
        if state.failed_pages:
            logger.warning(
                f"[PAGINATION] {strategy.key}: listing page(s) failed: "
                f"{', '.join(str(p) for p in state.failed_pages)}"
            )
        logger.info(f"[PAGINATION] {strategy.key}: {len(urls)} chapter URL(s) from {terminal} page(s)")
        return PaginationResult(
            chapter_urls=urls,
            last_page_url=strategy.listing_page_url(toc_url, terminal),
            terminal_page=terminal,
            failed_pages=list(state.failed_pages),
        )

    async def _fetch_page(self, strategy: SiteStrategy, url: str, page: int, state: CrawlState):
        try:
            soup = await self.retry_policy.run(strategy.fetch_listing_page, url, description=url)
        except (TransientNetworkError, TerminalFetchError) as e:
            logger.warning(f"[PAGINATION] Listing page {page} failed: {e}")
            state.failed_pages.append(page)
            if self.monitor:
                await self.monitor.record_listing_page(ok=False)
            self._emit(ProgressEvent(kind="listing_page_failed", message=str(e), current=page, url=url))
            return None
        if self.monitor:
            await self.monitor.record_listing_page(ok=True)
        return soup

    def _emit(self, event: ProgressEvent) -> None:
        if self.progress_callback:
            self.progress_callback(event)
