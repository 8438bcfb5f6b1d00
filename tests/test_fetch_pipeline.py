"""
Tests for fetch_pipeline.py — ordering, bounded concurrency, failure
isolation, resume and cancellation.
"""

import asyncio
from dataclasses import replace

import pytest

from novelcrawl.errors import (
    ClosedPoolError,
    PoolExhaustedTimeout,
    RateLimitedError,
    TransientNetworkError,
)
from novelcrawl.fetch_pipeline import ChapterFetchPipeline
from novelcrawl.fetcher import DocumentFetcher
from novelcrawl.models import ChapterResult, FetchStatus, ProgressEvent
from novelcrawl.monitor import FetchMonitor
from novelcrawl.session_pool import SessionPool
from novelcrawl.strategies import SiteStrategy
from novelcrawl.utils import AsyncRetryPolicy

from fakes import TEST_SITE, FakeBrowser, FakeFetcher, chapter_html, chapter_url, make_launcher


def _no_wait_policy(max_retries=2):
    return AsyncRetryPolicy(max_retries=max_retries, base_delay=0, rate_limit_delay=0, jitter=False)


def _chapters(count):
    return {chapter_url(n): chapter_html(n) for n in range(1, count + 1)}


def _pipeline(fetcher, retries=2, **kwargs):
    strategy = SiteStrategy(TEST_SITE, fetcher)
    return ChapterFetchPipeline(strategy.fetch_chapter, _no_wait_policy(retries), **kwargs)


def _urls(count):
    return [chapter_url(n) for n in range(1, count + 1)]


# ====================================================================
# Ordering and concurrency
# ====================================================================

class TestOrdering:

    @pytest.mark.parametrize("limit", [1, 5, 40])
    def test_results_follow_input_order(self, limit):
        """Result i belongs to URL i whatever the completion order."""
        fetcher = FakeFetcher(_chapters(40), delay=0.001)
        results = asyncio.run(_pipeline(fetcher).fetch_all(_urls(40), limit))
        assert [r.url for r in results] == _urls(40)
        assert [r.number for r in results] == list(range(1, 41))
        assert all(r.status == FetchStatus.FETCHED for r in results)
        assert results[6].title == "Chapter 7"
        assert "Text of chapter 7." in results[6].content

    def test_reversed_completion_still_ordered(self):
        """Later chapters finishing first do not reorder the output."""
        class ReverseLatency(FakeFetcher):
            async def fetch(self, url, render=False):
                n = int(url.rsplit("-", 1)[1])
                await asyncio.sleep((10 - n) * 0.003)
                return await super().fetch(url, render)

        results = asyncio.run(_pipeline(ReverseLatency(_chapters(10))).fetch_all(_urls(10), 10))
        assert [r.title for r in results] == [f"Chapter {n}" for n in range(1, 11)]

    def test_concurrency_is_bounded(self):
        """Never more than ``concurrency_limit`` fetches in flight."""
        fetcher = FakeFetcher(_chapters(30), delay=0.005)
        asyncio.run(_pipeline(fetcher).fetch_all(_urls(30), 3))
        assert fetcher.peak_in_flight <= 3
        assert len(fetcher.calls) == 30

    def test_empty_input(self):
        """No URLs → no results, no fetches."""
        fetcher = FakeFetcher({})
        assert asyncio.run(_pipeline(fetcher).fetch_all([], 5)) == []
        assert fetcher.calls == []

    def test_invalid_limit(self):
        """A limit below 1 is rejected before anything is fetched."""
        fetcher = FakeFetcher(_chapters(3))
        with pytest.raises(ValueError):
            asyncio.run(_pipeline(fetcher).fetch_all(_urls(3), 0))
        assert fetcher.calls == []


# ====================================================================
# Failure isolation
# ====================================================================

class TestFailureIsolation:

    def test_one_missing_chapter(self):
        """One 404 among ten → nine FETCHED, one FAILED_TERMINAL, one attempt."""
        pages = _chapters(10)
        del pages[chapter_url(4)]
        fetcher = FakeFetcher(pages)
        results = asyncio.run(_pipeline(fetcher).fetch_all(_urls(10), 5))
        assert sum(r.ok for r in results) == 9
        assert results[3].status == FetchStatus.FAILED_TERMINAL
        assert results[3].content is None
        assert "404" in results[3].error
        assert results[3].attempts == 1
        assert fetcher.count(chapter_url(4)) == 1

    def test_transient_error_is_retried(self):
        """A reset then a good response → FETCHED after two attempts."""
        pages = _chapters(3)
        pages[chapter_url(2)] = [TransientNetworkError("connection reset"), chapter_html(2)]
        results = asyncio.run(_pipeline(FakeFetcher(pages)).fetch_all(_urls(3), 2))
        assert results[1].ok
        assert results[1].attempts == 2

    def test_rate_limit_is_retried(self):
        """A 429 is retried like any transient error."""
        pages = _chapters(2)
        pages[chapter_url(1)] = [RateLimitedError("HTTP 429", chapter_url(1), retry_after=0), chapter_html(1)]
        results = asyncio.run(_pipeline(FakeFetcher(pages)).fetch_all(_urls(2), 2))
        assert all(r.ok for r in results)

    def test_exhausted_retries_are_retryable_failures(self):
        """Transient errors past the retry budget → FAILED_RETRYABLE."""
        pages = _chapters(3)
        pages[chapter_url(3)] = TransientNetworkError("HTTP 503", chapter_url(3))
        fetcher = FakeFetcher(pages)
        results = asyncio.run(_pipeline(fetcher, retries=2).fetch_all(_urls(3), 3))
        assert results[2].status == FetchStatus.FAILED_RETRYABLE
        assert results[2].attempts == 3
        assert fetcher.count(chapter_url(3)) == 3
        assert results[0].ok and results[1].ok

    def test_missing_content_is_terminal(self):
        """A page without the content node is not retried."""
        pages = _chapters(2)
        pages[chapter_url(2)] = "<html><title>Oops</title><body>nothing here</body></html>"
        fetcher = FakeFetcher(pages)
        results = asyncio.run(_pipeline(fetcher).fetch_all(_urls(2), 2))
        assert results[1].status == FetchStatus.FAILED_TERMINAL
        assert fetcher.count(chapter_url(2)) == 1

    def test_unexpected_exception_is_recorded(self):
        """A bug in one fetch fails that chapter only."""
        async def fetch_chapter(url):
            if url.endswith("-2"):
                raise KeyError("boom")
            return "t", "<p>x</p>"

        pipeline = ChapterFetchPipeline(fetch_chapter, _no_wait_policy())
        results = asyncio.run(pipeline.fetch_all(_urls(3), 3))
        assert results[1].status == FetchStatus.FAILED_TERMINAL
        assert "KeyError" in results[1].error
        assert results[0].ok and results[2].ok

    @pytest.mark.parametrize("error", [
        ClosedPoolError("Session pool was shut down"),
        PoolExhaustedTimeout("No browser page free after 300s"),
    ])
    def test_pool_errors_abort_the_run(self, error):
        """Pool errors are not per-chapter failures; they propagate."""
        pages = _chapters(5)
        pages[chapter_url(3)] = error
        with pytest.raises(type(error)):
            asyncio.run(_pipeline(FakeFetcher(pages)).fetch_all(_urls(5), 2))


# ====================================================================
# Resume, progress and cancellation
# ====================================================================

class TestResumeAndProgress:

    def test_resume_skips_fetched_chapters(self):
        """FETCHED entries in ``results`` are kept; only the rest are fetched."""
        done = ChapterResult(url=chapter_url(1), number=1)
        done.mark_fetched("Chapter 1", "<p>kept</p>")
        failed = ChapterResult(url=chapter_url(2), number=2)
        failed.mark_failed("HTTP 503", terminal=False)
        results = [done, failed]

        fetcher = FakeFetcher(_chapters(3))
        asyncio.run(_pipeline(fetcher).fetch_all(_urls(3), 2, results=results))

        assert fetcher.calls.count(chapter_url(1)) == 0
        assert sorted(fetcher.calls) == sorted([chapter_url(2), chapter_url(3)])
        assert results[0] is done
        assert results[0].content == "<p>kept</p>"
        assert [r.url for r in results] == _urls(3)
        assert all(r.ok for r in results)

    def test_resume_renumbers_moved_chapters(self):
        """A kept chapter that moved in the listing takes its new number."""
        done = ChapterResult(url=chapter_url(2), number=1)
        done.mark_fetched("Chapter 2", "<p>kept</p>")
        results = [done]
        asyncio.run(_pipeline(FakeFetcher(_chapters(2))).fetch_all(_urls(2), 1, results=results))
        assert results[1] is done
        assert done.number == 2

    def test_progress_events(self):
        """One event per chapter, ``current`` counting up to ``total``."""
        pages = _chapters(4)
        del pages[chapter_url(4)]
        events = []
        pipeline = _pipeline(FakeFetcher(pages), progress_callback=events.append)
        asyncio.run(pipeline.fetch_all(_urls(4), 1))
        assert all(isinstance(e, ProgressEvent) for e in events)
        assert [e.current for e in events] == [1, 2, 3, 4]
        assert {e.total for e in events} == {4}
        assert [e.kind for e in events] == ["chapter", "chapter", "chapter", "chapter_failed"]

    def test_monitor_counts(self):
        """The monitor sees every chapter, failure and retry."""
        pages = _chapters(3)
        pages[chapter_url(1)] = [TransientNetworkError("reset"), chapter_html(1)]
        del pages[chapter_url(3)]

        async def scenario():
            monitor = FetchMonitor()
            pipeline = _pipeline(FakeFetcher(pages), monitor=monitor)
            await pipeline.fetch_all(_urls(3), 2)
            return await monitor.snapshot()

        metrics = asyncio.run(scenario())
        assert metrics.chapters_fetched == 2
        assert metrics.chapters_failed == 1
        assert metrics.chapters_retried == 1
        assert metrics.in_flight == 0
        assert 1 <= metrics.peak_in_flight <= 2

    def test_cancellation_keeps_fetched_results(self):
        """Cancelling mid-run leaves finished chapters in the caller's list."""
        blocker = {}

        async def fetch_chapter(url):
            n = int(url.rsplit("-", 1)[1])
            if n > 2:
                await blocker["event"].wait()
            return f"Chapter {n}", "<p>x</p>"

        async def scenario():
            blocker["event"] = asyncio.Event()
            results = []
            pipeline = ChapterFetchPipeline(fetch_chapter, _no_wait_policy())
            task = asyncio.create_task(pipeline.fetch_all(_urls(6), 6, results=results))
            await asyncio.sleep(0.02)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return results

        results = asyncio.run(scenario())
        assert len(results) == 6
        assert [r.ok for r in results] == [True, True, False, False, False, False]
        assert all(r.status == FetchStatus.PENDING for r in results[2:])


# ====================================================================
# Rendered path through the session pool
# ====================================================================

class TestPooledFetch:

    def _rendered(self, count, capacity, delay, acquire_timeout=None):
        browser = FakeBrowser({url: (200, html) for url, html in _chapters(count).items()}, delay=delay)
        pool = SessionPool(capacity, acquire_timeout=acquire_timeout, launcher=make_launcher(browser))
        strategy = SiteStrategy(replace(TEST_SITE, requires_rendering=True), DocumentFetcher(pool))
        return ChapterFetchPipeline(strategy.fetch_chapter, _no_wait_policy()), pool, browser

    def test_workers_above_pool_capacity(self):
        """Eight workers over a capacity-2 pool never hold more than 2 pages."""
        async def scenario():
            pipeline, pool, browser = self._rendered(20, capacity=2, delay=0.002)
            results = await pipeline.fetch_all(_urls(20), 8)
            assert all(r.ok for r in results)
            assert pool.peak_checked_out <= 2
            assert len(browser.pages) <= 2
            assert pool.checked_out == 0
            await pool.shutdown()

        asyncio.run(scenario())

    def test_cancellation_returns_sessions(self):
        """Cancelling mid-navigation leaves nothing checked out."""
        async def scenario():
            pipeline, pool, _ = self._rendered(6, capacity=3, delay=0.05)
            task = asyncio.create_task(pipeline.fetch_all(_urls(6), 3))
            await asyncio.sleep(0.01)
            assert pool.checked_out == 3
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            assert pool.checked_out == 0
            await pool.shutdown()

        asyncio.run(scenario())

    def test_more_workers_than_sessions_under_acquire_timeout(self):
        """Workers above capacity take turns on the pool instead of timing out."""
        async def scenario():
            pipeline, pool, _ = self._rendered(40, capacity=1, delay=0.01, acquire_timeout=0.2)
            results = await pipeline.fetch_all(_urls(40), 2)
            assert [r.status for r in results] == [FetchStatus.FETCHED] * 40
            assert pool.checked_out == 0
            await pool.shutdown()

        asyncio.run(scenario())
