"""
Chapter Fetch Pipeline
======================
Fetches every chapter of a novel with at most ``concurrency_limit``
requests in flight and returns one ``ChapterResult`` per input URL, in
input order.

Architecture:
    - Indices of pending chapters go into an ``asyncio.Queue``
    - ``min(limit, pending)`` worker tasks pull indices until the queue is
      empty; each writes its result into slot ``index`` of the results list
    - Order is by index, never by completion time

Failure isolation:
    - ``TerminalFetchError``              → FAILED_TERMINAL, no retry
    - ``TransientNetworkError`` exhausted → FAILED_RETRYABLE
    - unexpected exception                → logged with traceback, FAILED_TERMINAL
    - pool errors                          → abort the whole run (re-raised)
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from .errors import (
    ClosedPoolError,
    PoolExhaustedTimeout,
    PoolStartupError,
    TerminalFetchError,
    TransientNetworkError,
)
from .models import ChapterResult, FetchStatus, ProgressEvent
from .monitor import FetchMonitor
from .utils import AsyncRetryPolicy

logger = logging.getLogger(__name__)

FetchChapterFn = Callable[[str], Awaitable[Tuple[str, str]]]

_FATAL_ERRORS = (PoolExhaustedTimeout, ClosedPoolError, PoolStartupError)


class ChapterFetchPipeline:
    """Bounded-concurrency, order-preserving chapter fetcher."""

    def __init__(
        self,
        fetch_chapter: FetchChapterFn,
        retry_policy: Optional[AsyncRetryPolicy] = None,
        monitor: Optional[FetchMonitor] = None,
        progress_callback: Optional[Callable[[ProgressEvent], None]] = None,
    ):
        self.fetch_chapter = fetch_chapter
        self.retry_policy = retry_policy or AsyncRetryPolicy()
        self.monitor = monitor
        self.progress_callback = progress_callback
        self._completed = 0

    async def fetch_all(
        self,
        chapter_urls: Sequence[str],
        concurrency_limit: int,
        results: Optional[List[ChapterResult]] = None,
    ) -> List[ChapterResult]:
        """Fetch ``chapter_urls`` and return their results in input order.

        Args:
            chapter_urls:      Ordered, de-duplicated chapter URLs.
            concurrency_limit: Maximum fetches in flight (≥ 1).
            results:           Optional list to fill in place; entries that
                               are already FETCHED (resume) are skipped.

        Raises:
            ValueError: ``concurrency_limit < 1``.
            PoolExhaustedTimeout / ClosedPoolError / PoolStartupError.
        """
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1 (got {concurrency_limit})")

        if results is None:
            results = []
        self._prepare_results(chapter_urls, results)

        queue: asyncio.Queue = asyncio.Queue()
        for index, result in enumerate(results):
            if not result.ok:
                queue.put_nowait(index)

        pending = queue.qsize()
        total = len(results)
        self._completed = total - pending
        if pending == 0:
            logger.info(f"[PIPELINE] All {total} chapter(s) already fetched")
            return results

        worker_count = min(concurrency_limit, pending)
        logger.info(
            f"[PIPELINE] Fetching {pending}/{total} chapter(s) with {worker_count} worker(s)"
        )

        workers = [
            asyncio.create_task(self._worker(i, queue, results))
            for i in range(worker_count)
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            for w in workers:
                if not w.done():
                    w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        failed = sum(1 for r in results if r.failed)
        logger.info(f"[PIPELINE] Done: {total - failed} fetched, {failed} failed")
        return results

    @staticmethod
    def _prepare_results(chapter_urls: Sequence[str], results: List[ChapterResult]) -> None:
        """Make ``results[i]`` the slot for ``chapter_urls[i]``, keeping prior FETCHED slots."""
        previous = {r.url: r for r in results if r.ok}
        results.clear()
        for index, url in enumerate(chapter_urls):
            reused = previous.get(url)
            if reused is not None:
                reused.number = index + 1
                results.append(reused)
            else:
                results.append(ChapterResult(url=url, number=index + 1))

    async def _worker(self, worker_id: int, queue: asyncio.Queue, results: List[ChapterResult]) -> None:
        """Worker coroutine — pulls chapter indices and fetches them."""
        while True:
            try:
                index = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            await self._fetch_one(results[index], len(results))

    async def _fetch_one(self, result: ChapterResult, total: int) -> None:
        retries = 0

        def _on_retry(attempt: int, error: Exception) -> None:
            nonlocal retries
            retries = attempt

        if self.monitor:
            await self.monitor.worker_started()
        started = time.monotonic()
        try:
            title, content = await self.retry_policy.run(
                self.fetch_chapter, result.url, description=result.url, on_retry=_on_retry,
            )
            result.mark_fetched(title, content)
        except _FATAL_ERRORS:
            raise
        except TerminalFetchError as e:
            logger.warning(f"[PIPELINE] Chapter {result.number} failed (terminal): {e}")
            result.mark_failed(str(e), terminal=True)
        except TransientNetworkError as e:
            logger.warning(f"[PIPELINE] Chapter {result.number} failed after retries: {e}")
            result.mark_failed(str(e), terminal=False)
        except Exception as e:
            logger.error(f"[PIPELINE] Chapter {result.number} unexpected error: {e}", exc_info=True)
            result.mark_failed(f"{type(e).__name__}: {e}", terminal=True)
        finally:
            result.attempts += retries + 1
            if self.monitor:
                await self.monitor.worker_finished()
                if retries:
                    await self.monitor.record_retry(retries)

        if self.monitor:
            await self.monitor.record_chapter(
                ok=result.ok, elapsed_ms=(time.monotonic() - started) * 1000,
            )
        self._completed += 1
        if self.progress_callback:
            kind = "chapter" if result.status == FetchStatus.FETCHED else "chapter_failed"
            self.progress_callback(ProgressEvent(
                kind=kind,
                message=result.title or result.error,
                current=self._completed,
                total=total,
                url=result.url,
            ))
