"""
Fetch Monitor
=============
Running metrics for one novel crawl.

Tracks:
- Chapters fetched / failed / retried
- Listing pages fetched / failed
- In-flight chapter fetches (current and peak)
- Per-chapter fetch time (average and p95)

Async-safe: all mutators take an asyncio.Lock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

_REPORT_INTERVAL_SEC = 10.0


@dataclass
class FetchMetrics:
    """Snapshot of all crawl metrics at a point in time."""
    chapters_fetched: int = 0
    chapters_failed: int = 0
    chapters_retried: int = 0
    listing_pages_fetched: int = 0
    listing_pages_failed: int = 0

    in_flight: int = 0
    peak_in_flight: int = 0

    avg_chapter_ms: float = 0.0
    p95_chapter_ms: float = 0.0
    chapters_per_sec: float = 0.0
    elapsed_sec: float = 0.0
    stop_reason: str = ""


class FetchMonitor:
    """
    Usage::

        monitor = FetchMonitor()
        await monitor.start()

        # around each chapter fetch:
        await monitor.worker_started()
        ...
        await monitor.record_chapter(ok=True, elapsed_ms=812.0)
        await monitor.worker_finished()

        await monitor.stop("completed")
        print(monitor.format_summary(await monitor.snapshot()))
    """

    def __init__(self, report_interval: float = _REPORT_INTERVAL_SEC):
        self._lock = asyncio.Lock()
        self._start_time: float = 0.0
        self._report_interval = report_interval

        self._chapters_fetched = 0
        self._chapters_failed = 0
        self._chapters_retried = 0
        self._listing_fetched = 0
        self._listing_failed = 0

        self._in_flight = 0
        self._peak_in_flight = 0

        # keep last 1000 for percentile calc
        self._chapter_ms: deque[float] = deque(maxlen=1000)

        self._reporter_task: Optional[asyncio.Task] = None
        self._running = False
        self._stop_reason = ""

    async def start(self) -> None:
        """Start the clock and the periodic reporter."""
        self._start_time = time.monotonic()
        self._running = True
        self._reporter_task = asyncio.create_task(self._reporter_loop())

    async def stop(self, reason: str = "completed") -> None:
        self._running = False
        self._stop_reason = reason
        if self._reporter_task:
            self._reporter_task.cancel()
            try:
                await self._reporter_task
            except asyncio.CancelledError:
                pass
            self._reporter_task = None

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def record_chapter(self, ok: bool, elapsed_ms: float = 0.0) -> None:
        async with self._lock:
            if ok:
                self._chapters_fetched += 1
            else:
                self._chapters_failed += 1
            if elapsed_ms > 0:
                self._chapter_ms.append(elapsed_ms)

    async def record_retry(self, count: int = 1) -> None:
        async with self._lock:
            self._chapters_retried += count

    async def record_listing_page(self, ok: bool) -> None:
        async with self._lock:
            if ok:
                self._listing_fetched += 1
            else:
                self._listing_failed += 1

    async def worker_started(self) -> None:
        async with self._lock:
            self._in_flight += 1
            if self._in_flight > self._peak_in_flight:
                self._peak_in_flight = self._in_flight

    async def worker_finished(self) -> None:
        async with self._lock:
            self._in_flight = max(0, self._in_flight - 1)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def snapshot(self) -> FetchMetrics:
        """Take a consistent snapshot of all metrics."""
        now = time.monotonic()
        async with self._lock:
            elapsed = now - self._start_time if self._start_time else 0.0
            timings = list(self._chapter_ms)
            avg = sum(timings) / len(timings) if timings else 0.0
            p95 = 0.0
            if timings:
                sorted_t = sorted(timings)
                p95 = sorted_t[min(int(len(sorted_t) * 0.95), len(sorted_t) - 1)]
            rate = self._chapters_fetched / elapsed if elapsed > 0 else 0.0

            return FetchMetrics(
                chapters_fetched=self._chapters_fetched,
                chapters_failed=self._chapters_failed,
                chapters_retried=self._chapters_retried,
                listing_pages_fetched=self._listing_fetched,
                listing_pages_failed=self._listing_failed,
                in_flight=self._in_flight,
                peak_in_flight=self._peak_in_flight,
                avg_chapter_ms=round(avg, 1),
                p95_chapter_ms=round(p95, 1),
                chapters_per_sec=round(rate, 2),
                elapsed_sec=round(elapsed, 2),
                stop_reason=self._stop_reason,
            )

    async def _reporter_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._report_interval)
            if not self._running:
                break
            m = await self.snapshot()
            logger.info(
                f"[MONITOR] "
                f"chapters={m.chapters_fetched} "
                f"fail={m.chapters_failed} "
                f"retry={m.chapters_retried} "
                f"in_flight={m.in_flight} (peak {m.peak_in_flight}) "
                f"speed={m.chapters_per_sec:.1f} ch/s "
                f"avg={m.avg_chapter_ms:.0f}ms "
                f"elapsed={m.elapsed_sec:.0f}s"
            )
    def format_summary(self, metrics: FetchMetrics) -> str:
        """Format a human-readable summary string."""
        lines = [
            "=" * 65,
            "  FETCH SUMMARY",
            "=" * 65,
            f"  Chapters fetched:    {metrics.chapters_fetched}",
            f"  Chapters failed:     {metrics.chapters_failed}",
            f"  Retries:             {metrics.chapters_retried}",
            f"  Listing pages:       {metrics.listing_pages_fetched} ok, "
            f"{metrics.listing_pages_failed} failed",
            "-" * 65,
            f"  Peak in flight:      {metrics.peak_in_flight}",
            f"  Speed:               {metrics.chapters_per_sec:.2f} chapters/sec",
            f"  Avg chapter time:    {metrics.avg_chapter_ms:.0f} ms",
            f"  P95 chapter time:    {metrics.p95_chapter_ms:.0f} ms",
            "-" * 65,
            f"  Elapsed time:        {metrics.elapsed_sec:.1f} s",
            f"  Stop reason:         {metrics.stop_reason}",
            "=" * 65,
        ]
        return "\n".join(lines)
