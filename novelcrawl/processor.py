"""
Novel Processor
===============
Orchestrates one novel crawl end to end:

    INIT → METADATA_FETCHED → PAGINATION_RESOLVED → CHAPTER_URLS_COLLECTED
         → CHAPTERS_FETCHED → ASSEMBLED          (FAILED on a fatal error)

Outcomes:
    - unsupported site, or the novel page cannot be loaded → FAILED_TO_START
    - every chapter fetched and every listing page read     → SUCCEEDED
    - anything less (including a later fatal pool error)   → PARTIAL

The processor owns the session pool and fetcher it creates and shuts them
down when the crawl ends; injected ones are left open for the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Callable, List, Mapping, Optional, Tuple

from .errors import CrawlError, UnsupportedSiteError
from .fetch_pipeline import ChapterFetchPipeline
from .fetcher import DocumentFetcher
from .models import (
    AssemblyOutcome,
    ChapterResult,
    NovelAssembly,
    ProcessorState,
    ProcessResult,
    ProgressEvent,
)
from .monitor import FetchMonitor
from .pagination import CrawlState, PaginationCrawler
from .run_config import CrawlerRunConfig
from .session_pool import SessionPool
from .site_config import SiteSelectorConfig, load_site_configs
from .strategies import SiteStrategy, StrategyFactory
from .utils import URLNormalizer

logger = logging.getLogger(__name__)


class NovelProcessor:
    """Crawl one novel's metadata, chapter list and chapters."""

    def __init__(
        self,
        config: Optional[CrawlerRunConfig] = None,
        *,
        site_configs: Optional[Mapping[str, SiteSelectorConfig]] = None,
        strategy_factory: Optional[StrategyFactory] = None,
        pool: Optional[SessionPool] = None,
        fetcher: Optional[DocumentFetcher] = None,
        progress_callback: Optional[Callable[[ProgressEvent], None]] = None,
    ):
        self.config = (config or CrawlerRunConfig()).validate()
        if strategy_factory is None:
            if site_configs is None:
                site_configs = load_site_configs(self.config.sites_file)
            strategy_factory = StrategyFactory(site_configs)
        self.strategy_factory = strategy_factory
        self.pool = pool
        self.fetcher = fetcher
        self.progress_callback = progress_callback
        self.retry_policy = self.config.to_retry_policy()

        self.state = ProcessorState.INIT
        self.state_history: List[ProcessorState] = [ProcessorState.INIT]
        self.current_assembly: Optional[NovelAssembly] = None
        self.monitor: Optional[FetchMonitor] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, toc_url: str, resume_from: Optional[NovelAssembly] = None) -> ProcessResult:
        """Synchronous wrapper around ``process_novel``."""
        return asyncio.run(self.process_novel(toc_url, resume_from=resume_from))

    async def process_novel(
        self,
        toc_url: str,
        resume_from: Optional[NovelAssembly] = None,
    ) -> ProcessResult:
        """Crawl the novel at ``toc_url``.

        Args:
            toc_url:     The novel's table-of-contents URL.
            resume_from: A previous assembly of the same novel; its FETCHED
                         chapters are reused instead of fetched again.

        Returns:
            ProcessResult with the outcome, the assembly (None if the crawl
            never started) and the fatal error, if any.

        Raises:
            asyncio.CancelledError: the crawl was cancelled; the partial
                assembly stays available as ``current_assembly``.
        """
        self.state = ProcessorState.INIT
        self.state_history = [ProcessorState.INIT]
        self.current_assembly = None
        self.config.log_summary(toc_url)

        try:
            strategy = self.strategy_factory.detect(toc_url)
        except UnsupportedSiteError as e:
            logger.error(f"[PROCESSOR] {e}")
            return self._failed_to_start(e)
        logger.info(f"[PROCESSOR] Site: {strategy.site.name} ({type(strategy).__name__})")
        if self.progress_callback:
            self.progress_callback(ProgressEvent(kind="site_resolved", message=strategy.site.name, url=toc_url))

        owns_pool = self.pool is None and self.fetcher is None
        pool = self.pool
        if owns_pool:
            pool = SessionPool(
                self.config.pool_capacity,
                headless=self.config.headless,
                user_agent=self.config.user_agent,
                block_resources=self.config.block_resources,
                acquire_timeout=self.config.acquire_timeout_seconds,
            )
        owns_fetcher = self.fetcher is None
        fetcher = self.fetcher or DocumentFetcher(
            pool,
            timeout_seconds=self.config.timeout_seconds,
            user_agent=self.config.user_agent,
        )
        strategy.fetcher = fetcher

        self.monitor = FetchMonitor()
        await self.monitor.start()
        stop_reason = "completed"
        try:
            result = await self._crawl(strategy, toc_url, resume_from)
            if result.error is not None:
                stop_reason = f"failed: {type(result.error).__name__}"
            return result
        except asyncio.CancelledError:
            stop_reason = "cancelled"
            logger.warning(f"[PROCESSOR] Crawl cancelled in state {self.state.value}")
            raise
        finally:
            await self.monitor.stop(stop_reason)
            logger.info("\n" + self.monitor.format_summary(await self.monitor.snapshot()))
            if owns_fetcher:
                fetcher.close()
            if owns_pool and pool is not None:
                await pool.shutdown()

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _crawl(
        self,
        strategy: SiteStrategy,
        toc_url: str,
        resume_from: Optional[NovelAssembly],
    ) -> ProcessResult:
        try:
            novel = await self.retry_policy.run(
                strategy.scrape_metadata, toc_url, description=toc_url,
            )
        except CrawlError as e:
            logger.error(f"[PROCESSOR] Could not load novel page: {e}")
            return self._failed_to_start(e)

        assembly = NovelAssembly(novel=novel)
        self.current_assembly = assembly
        self._transition(ProcessorState.METADATA_FETCHED, novel.title or toc_url)

        try:
            crawler = PaginationCrawler(
                self.retry_policy,
                self.config.listing_parallelism,
                monitor=self.monitor,
                progress_callback=self.progress_callback,
            )
            state = await crawler.resolve(strategy, toc_url)
            self._transition(ProcessorState.PAGINATION_RESOLVED, f"{state.terminal_page} listing page(s)")

            known_urls, start_page = self._listing_resume_point(strategy, toc_url, state, resume_from)
            pagination = await crawler.collect(
                strategy, toc_url, state, known_urls=known_urls, start_page=start_page,
            )
            novel.set_chapter_urls(pagination.chapter_urls)
            novel.last_toc_page_url = pagination.last_page_url
            assembly.failed_listing_pages = list(pagination.failed_pages)
            self._transition(ProcessorState.CHAPTER_URLS_COLLECTED, f"{novel.total_chapters} chapter(s)")

            assembly.chapters = self._reusable_chapters(toc_url, resume_from)
            pipeline = ChapterFetchPipeline(
                strategy.fetch_chapter,
                self.retry_policy,
                monitor=self.monitor,
                progress_callback=self.progress_callback,
            )
            await pipeline.fetch_all(
                novel.chapter_urls, self.config.concurrency_limit, results=assembly.chapters,
            )
            self._transition(ProcessorState.CHAPTERS_FETCHED)
        except CrawlError as e:
            logger.error(f"[PROCESSOR] Crawl aborted: {e}")
            self._transition(ProcessorState.FAILED, str(e))
            return ProcessResult(
                outcome=AssemblyOutcome.PARTIAL,
                assembly=assembly,
                error=e,
                state=self.state,
            )

        self._transition(ProcessorState.ASSEMBLED, assembly.summary())
        logger.info(f"[PROCESSOR] {assembly.summary()} → {assembly.outcome.value}")
        return ProcessResult(outcome=assembly.outcome, assembly=assembly, state=self.state)

    def _reusable_chapters(
        self,
        toc_url: str,
        resume_from: Optional[NovelAssembly],
    ) -> List[ChapterResult]:
        if not self._same_novel(toc_url, resume_from):
            return []
        reusable = [replace(c) for c in resume_from.chapters if c.ok]
        if reusable:
            logger.info(f"[PROCESSOR] Resuming: {len(reusable)} chapter(s) already fetched")
        return reusable

    def _listing_resume_point(
        self,
        strategy: SiteStrategy,
        toc_url: str,
        state: CrawlState,
        resume_from: Optional[NovelAssembly],
    ) -> Tuple[List[str], int]:
        """Chapter URLs to keep and the listing page to restart from.

        Pages before the last one seen on a clean earlier crawl are not
        re-read; new chapters only appear from that page on.
        """
        if not self._same_novel(toc_url, resume_from, warn=False):
            return [], 2
        previous = resume_from.novel
        if not previous.last_toc_page_url or not previous.chapter_urls or resume_from.failed_listing_pages:
            return [], 2
        last_page = strategy.listing_page_number(previous.last_toc_page_url)
        if last_page <= 2 or last_page > (state.terminal_page or 1):
            return [], 2
        logger.info(
            f"[PROCESSOR] Resuming listing walk at page {last_page} "
            f"({len(previous.chapter_urls)} chapter URL(s) already known)"
        )
        return list(previous.chapter_urls), last_page

    def _same_novel(self, toc_url: str, resume_from: Optional[NovelAssembly], warn: bool = True) -> bool:
        if resume_from is None:
            return False
        normalizer = URLNormalizer()
        if normalizer.normalize(resume_from.toc_url) != normalizer.normalize(toc_url):
            if warn:
                logger.warning(f"[PROCESSOR] Ignoring resume data for a different novel: {resume_from.toc_url}")
            return False
        return True

    # ------------------------------------------------------------------
    # State + events
    # ------------------------------------------------------------------

    def _failed_to_start(self, error: CrawlError) -> ProcessResult:
        self._transition(ProcessorState.FAILED, str(error))
        return ProcessResult(
            outcome=AssemblyOutcome.FAILED_TO_START,
            assembly=None,
            error=error,
            state=self.state,
        )

    def _transition(self, state: ProcessorState, message: str = "") -> None:
        self.state = state
        self.state_history.append(state)
        logger.info(f"[PROCESSOR] → {state.value}" + (f" ({message})" if message else ""))
        if self.progress_callback:
            self.progress_callback(ProgressEvent(kind="state", message=state.value))
