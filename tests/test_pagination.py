"""
Tests for pagination.py — listing walk, merge order and failure isolation.
"""

import asyncio

import pytest

from novelcrawl.errors import ClosedPoolError, TransientNetworkError
from novelcrawl.pagination import CrawlState, PaginationCrawler
from novelcrawl.strategies import SiteStrategy
from novelcrawl.utils import AsyncRetryPolicy

from fakes import TEST_SITE, TOC_URL, FakeFetcher, build_site, chapter_url, listing_html, listing_url


def _no_wait_policy(max_retries=2):
    return AsyncRetryPolicy(max_retries=max_retries, base_delay=0, rate_limit_delay=0, jitter=False)


def _crawl(pages, max_parallel=5, retries=2):
    fetcher = FakeFetcher(pages)
    strategy = SiteStrategy(TEST_SITE, fetcher)
    crawler = PaginationCrawler(_no_wait_policy(retries), max_parallel)
    return asyncio.run(crawler.crawl(strategy, TOC_URL)), fetcher


# ====================================================================
# Happy path
# ====================================================================

class TestPaginationWalk:

    def test_three_pages_forty_urls(self):
        """Page 1 has no links, pages 2 and 3 have 20 each → 40 in order."""
        site = build_site({1: [], 2: list(range(1, 21)), 3: list(range(21, 41))})
        result, _ = _crawl(site)
        assert result.terminal_page == 3
        assert result.chapter_urls == [chapter_url(n) for n in range(1, 41)]
        assert result.last_page_url == listing_url(3)
        assert result.failed_pages == []

    def test_single_page(self):
        """No pagination control → only page 1 is fetched."""
        site = build_site({1: [1, 2, 3]})
        result, fetcher = _crawl(site)
        assert result.terminal_page == 1
        assert result.chapter_urls == [chapter_url(n) for n in (1, 2, 3)]
        assert fetcher.calls == [listing_url(1)]

    def test_merge_is_page_order_not_completion_order(self):
        """Pages finishing out of order still merge by page number."""
        site = build_site({1: [1], 2: [2], 3: [3], 4: [4]})

        class SlowEarlyPages(FakeFetcher):
            async def fetch(self, url, render=False):
                if url.endswith("page=2"):
                    await asyncio.sleep(0.03)
                return await super().fetch(url, render)

        fetcher = SlowEarlyPages(site)
        crawler = PaginationCrawler(_no_wait_policy(), max_parallel=4)
        result = asyncio.run(crawler.crawl(SiteStrategy(TEST_SITE, fetcher), TOC_URL))
        assert result.chapter_urls == [chapter_url(n) for n in (1, 2, 3, 4)]

    def test_parallelism_is_bounded(self):
        """No more than max_parallel listing pages in flight."""
        site = build_site({p: [p] for p in range(1, 11)})
        fetcher = FakeFetcher(site, delay=0.005)
        crawler = PaginationCrawler(_no_wait_policy(), max_parallel=2)
        asyncio.run(crawler.crawl(SiteStrategy(TEST_SITE, fetcher), TOC_URL))
        assert fetcher.peak_in_flight <= 2


# ====================================================================
# De-duplication
# ====================================================================

class TestDeduplication:

    def test_duplicate_across_pages_kept_at_first_position(self):
        """A chapter linked on two pages appears once, where first seen."""
        site = build_site({1: [1, 2], 2: [2, 3], 3: [3, 4]})
        result, _ = _crawl(site)
        assert result.chapter_urls == [chapter_url(n) for n in (1, 2, 3, 4)]

    def test_state_dedupes_normalised_variants(self):
        """Trailing slash and fragment variants collapse to one entry."""
        state = CrawlState(page_urls={
            2: ["https://a.com/c/2", "https://a.com/c/3"],
            1: ["https://a.com/c/1", "https://a.com/c/2/", "https://a.com/c/1#x"],
        })
        assert state.ordered_urls() == ["https://a.com/c/1", "https://a.com/c/2/", "https://a.com/c/3"]

    def test_resumed_walk_skips_pages_before_start(self):
        """Known URLs come first; only page 1 and pages from start_page are fetched."""
        site = build_site({1: [1, 2], 2: [3, 4], 3: [5, 6], 4: [7, 8]})
        fetcher = FakeFetcher(site)
        strategy = SiteStrategy(TEST_SITE, fetcher)
        crawler = PaginationCrawler(_no_wait_policy(), 5)

        async def scenario():
            state = await crawler.resolve(strategy, TOC_URL)
            known = [chapter_url(n) for n in range(1, 6)]
            return await crawler.collect(strategy, TOC_URL, state, known_urls=known, start_page=3)

        result = asyncio.run(scenario())
        assert result.chapter_urls == [chapter_url(n) for n in range(1, 9)]
        assert fetcher.count(listing_url(2)) == 0
        assert fetcher.count(listing_url(3)) == 1
        assert result.last_page_url == listing_url(4)


# ====================================================================
# Failure isolation
# ====================================================================

class TestListingFailures:

    def test_failed_middle_page_recorded(self):
        """A page failing after retries contributes nothing; the rest survive."""
        site = build_site({1: [1], 2: [2], 3: [3]})
        site[listing_url(2)] = TransientNetworkError("HTTP 503", listing_url(2))
        result, fetcher = _crawl(site, retries=2)
        assert result.failed_pages == [2]
        assert result.chapter_urls == [chapter_url(1), chapter_url(3)]
        assert fetcher.count(listing_url(2)) == 3

    def test_transient_listing_error_recovers(self):
        """One transient failure then success → page counted normally."""
        site = build_site({1: [1], 2: [2]})
        site[listing_url(2)] = [TransientNetworkError("reset"), listing_html(2, [2])]
        result, _ = _crawl(site)
        assert result.failed_pages == []
        assert result.chapter_urls == [chapter_url(1), chapter_url(2)]

    def test_first_page_failure_means_one_page(self):
        """If page 1 never loads the terminal page is 1 and page 1 is failed."""
        result, _ = _crawl({}, retries=0)
        assert result.terminal_page == 1
        assert result.failed_pages == [1]
        assert result.chapter_urls == []

    def test_pool_errors_propagate(self):
        """Pool shutdown aborts the walk instead of being recorded."""
        site = build_site({1: [1], 2: [2]})
        site[listing_url(2)] = ClosedPoolError("Session pool was shut down")
        with pytest.raises(ClosedPoolError):
            _crawl(site)

    def test_invalid_parallelism(self):
        """max_parallel below 1 is rejected."""
        with pytest.raises(ValueError):
            PaginationCrawler(_no_wait_policy(), max_parallel=0)
