"""
Browser Session Pool
====================
Bounded pool of reusable Playwright pages over one shared browser.

Architecture:
- Zero-or-one Chromium process per pool, started lazily on first acquire
- One shared BrowserContext (cookies survive across pages)
- At most ``capacity`` live pages; idle pages are reused
- Exhaustion blocks the caller on a FIFO wait-queue (no polling);
  ``release`` hands the page itself to the longest waiter and
  ``discard`` hands over the freed slot, so waiters keep their turn
- Resource blocking (images, fonts, media) on the shared context
- Basic fingerprint masking: no ``navigator.webdriver``, realistic UA,
  ``AutomationControlled`` blink feature disabled

The pool never navigates or retries — callers do.

Usage::

    pool = SessionPool(capacity=3)
    async with pool.session() as handle:
        status, headers = await handle.navigate(url, timeout_ms=30000)
        html = await handle.content()
    await pool.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Deque, Dict, Optional, Tuple

from playwright.async_api import async_playwright, Browser, BrowserContext, Page
from playwright.async_api import Error as PlaywrightError

from .errors import ClosedPoolError, PoolExhaustedTimeout, PoolStartupError
from .run_config import _DEFAULTS

logger = logging.getLogger(__name__)

_LAUNCH_ARGS = [
    '--disable-blink-features=AutomationControlled',
    '--disable-gpu',
    '--no-sandbox',
    '--disable-dev-shm-usage',
    '--disable-background-networking',
    '--disable-default-apps',
    '--disable-extensions',
    '--disable-sync',
    '--no-first-run',
    '--no-default-browser-check',
]

# Injected before any page script runs
_FINGERPRINT_SCRIPT = """
Object.defineProperty(Navigator.prototype, 'webdriver', { get: () => undefined });
window.chrome = window.chrome || { runtime: {} };
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
"""

# Resource types to block for speed
_BLOCKED_RESOURCE_TYPES = frozenset([
    "image", "media", "font",
])

Launcher = Callable[[bool], Awaitable[Tuple[Any, Browser]]]


async def launch_chromium(headless: bool) -> Tuple[Any, Browser]:
    """Start Playwright and launch Chromium. Returns (playwright, browser)."""
    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.launch(headless=headless, args=_LAUNCH_ARGS)
    except BaseException:
        await playwright.stop()
        raise
    return playwright, browser


async def _close_browser(playwright: Any, browser: Optional[Browser]) -> None:
    if browser is not None:
        try:
            await browser.close()
        except PlaywrightError as e:
            logger.debug(f"[POOL] Error closing browser: {e}")
    if playwright is not None:
        try:
            await playwright.stop()
        except PlaywrightError as e:
            logger.debug(f"[POOL] Error stopping Playwright: {e}")


# Grant to a waiter: a slot already counted as live, to open a page in
_FREED_SLOT = object()


class SessionHandle:
    """A pooled browser page, exclusively owned by whoever checked it out."""

    def __init__(self, page: Page, handle_id: int):
        self.page = page
        self.id = handle_id
        self.checked_out = False
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed or self.page.is_closed()

    async def navigate(
        self, url: str, timeout_ms: int, wait_until: str = 'load'
    ) -> Tuple[Optional[int], Dict[str, str]]:
        """Navigate and return ``(status, headers)``; status is None without a response."""
        response = await self.page.goto(url, timeout=timeout_ms, wait_until=wait_until)
        if response is None:
            return None, {}
        return response.status, dict(response.headers)

    async def content(self) -> str:
        return await self.page.content()

    async def close(self) -> None:
        self._closed = True
        if self.page.is_closed():
            return
        try:
            await self.page.close()
        except PlaywrightError as e:
            logger.debug(f"[POOL] Error closing page #{self.id}: {e}")

    def __repr__(self) -> str:
        state = "closed" if self.is_closed else ("checked-out" if self.checked_out else "idle")
        return f"<SessionHandle #{self.id} {state}>"


class SessionPool:
    """
    Bounded, reusable pool of browser pages.

    Invariants:
        - ``live_count <= capacity`` at every instant
        - a handle is checked out to at most one caller
        - closed handles are never handed out
    """

    def __init__(
        self,
        capacity: int = 1,
        *,
        headless: bool = True,
        user_agent: str = _DEFAULTS["user_agent"],
        block_resources: bool = True,
        acquire_timeout: Optional[float] = None,
        launcher: Optional[Launcher] = None,
    ):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1 (got {capacity})")
        self._capacity = capacity
        self._headless = headless
        self._user_agent = user_agent
        self._block_resources = block_resources
        self._acquire_timeout = acquire_timeout
        self._launcher: Launcher = launcher or launch_chromium

        # Playwright handles
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._browser_lock = asyncio.Lock()

        # Pool state
        self._idle: Deque[SessionHandle] = deque()
        self._waiters: Deque[asyncio.Future] = deque()
        self._live = 0
        self._checked_out = 0
        self._peak_checked_out = 0
        self._next_id = 0
        self._closed = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def checked_out(self) -> int:
        return self._checked_out

    @property
    def peak_checked_out(self) -> int:
        return self._peak_checked_out

    @property
    def live_count(self) -> int:
        return self._live

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    @property
    def waiting(self) -> int:
        return sum(1 for f in self._waiters if not f.done())

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------

    async def acquire(self, headless: Optional[bool] = None) -> SessionHandle:
        """
        Check out a navigation-ready page.

        Reuses an idle page when one is alive, opens a new one while below
        capacity, otherwise waits for a release.

        Raises:
            ClosedPoolError:      the pool was shut down
            PoolExhaustedTimeout: nothing freed within ``acquire_timeout``
            PoolStartupError:     the browser or page could not be created
        """
        loop = asyncio.get_running_loop()
        deadline = None
        if self._acquire_timeout is not None:
            deadline = loop.time() + self._acquire_timeout

        while True:
            self._ensure_open()

            handle = self._pop_idle()
            if handle is not None:
                logger.debug(f"[POOL] Reusing page #{handle.id}")
                return self._check_out(handle)

            if self._live < self._capacity:
                # Reserve the slot before suspending so concurrent callers
                # cannot overshoot capacity while the page is being created.
                self._live += 1
                return await self._open_reserved(headless)

            granted = await self._wait_for_slot(loop, deadline)
            if isinstance(granted, SessionHandle):
                logger.debug(f"[POOL] Handed page #{granted.id} to a waiter")
                return granted
            if granted is _FREED_SLOT:
                return await self._open_reserved(headless)
            # None: woken by shutdown, the next pass raises ClosedPoolError

    def release(self, handle: SessionHandle) -> None:
        """
        Return a handle. Idempotent.

        A live page goes straight to the longest waiter, if any, so a
        releasing caller cannot take it back before the waiter runs.
        Closed handles are dropped and their slot passed on.
        """
        if not handle.checked_out:
            return
        handle.checked_out = False
        self._checked_out -= 1
        if self._closed or handle.is_closed:
            logger.debug(f"[POOL] Dropped page #{handle.id} on release")
            self._free_slot()
            return
        fut = self._next_waiter()
        if fut is None:
            self._idle.append(handle)
        else:
            fut.set_result(self._check_out(handle))

    async def discard(self, handle: SessionHandle) -> None:
        """Drop a handle that failed mid-navigation and close its page."""
        if handle.checked_out:
            handle.checked_out = False
            self._checked_out -= 1
            self._free_slot()
            logger.debug(f"[POOL] Discarded page #{handle.id}")
        await handle.close()

    @asynccontextmanager
    async def session(self, headless: Optional[bool] = None) -> AsyncIterator[SessionHandle]:
        """``async with pool.session() as handle`` — acquire, then always release."""
        handle = await self.acquire(headless)
        try:
            yield handle
        finally:
            self.release(handle)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Close every page, the shared context and the browser process."""
        if self._closed and self._browser is None and not self._idle:
            return
        self._closed = True

        # Wake every waiter; each re-checks and raises ClosedPoolError
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(None)

        idle = list(self._idle)
        self._idle.clear()
        self._live -= len(idle)
        for handle in idle:
            await handle.close()

        async with self._browser_lock:
            if self._context is not None:
                try:
                    await self._context.close()
                except PlaywrightError as e:
                    logger.debug(f"[POOL] Error closing context: {e}")
                self._context = None
            await _close_browser(self._playwright, self._browser)
            self._playwright = None
            self._browser = None

        logger.info(f"[POOL] Shut down (peak {self._peak_checked_out}/{self._capacity} pages in use)")

    async def __aenter__(self) -> "SessionPool":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise ClosedPoolError("Session pool was shut down")

    def _pop_idle(self) -> Optional[SessionHandle]:
        while self._idle:
            handle = self._idle.popleft()
            if handle.is_closed:
                # Liveness check failed — free its slot
                self._live -= 1
                logger.debug(f"[POOL] Idle page #{handle.id} was closed, discarding")
                continue
            return handle
        return None

    def _check_out(self, handle: SessionHandle) -> SessionHandle:
        handle.checked_out = True
        self._checked_out += 1
        if self._checked_out > self._peak_checked_out:
            self._peak_checked_out = self._checked_out
        return handle

    def _next_waiter(self) -> Optional[asyncio.Future]:
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                return fut
        return None

    def _free_slot(self) -> None:
        """A live slot was given up: hand it to the longest waiter, else shrink."""
        fut = self._next_waiter()
        if fut is None:
            self._live -= 1
        else:
            fut.set_result(_FREED_SLOT)

    def _give_back(self, granted: Any) -> None:
        # A waiter left after being granted something; pass it on
        if isinstance(granted, SessionHandle):
            self.release(granted)
        elif granted is _FREED_SLOT:
            self._free_slot()

    async def _open_reserved(self, headless: Optional[bool]) -> SessionHandle:
        """Open a page in a slot already counted in ``_live``."""
        try:
            page = await self._open_page(self._headless if headless is None else headless)
        except BaseException:
            self._free_slot()
            raise
        self._next_id += 1
        handle = SessionHandle(page, self._next_id)
        if self._closed:
            self._live -= 1
            await handle.close()
            raise ClosedPoolError("Session pool was shut down")
        logger.debug(f"[POOL] Opened page #{handle.id} ({self._live}/{self._capacity} live)")
        return self._check_out(handle)

    async def _wait_for_slot(self, loop: asyncio.AbstractEventLoop, deadline: Optional[float]) -> Any:
        """
        Queue up and wait for a grant.

        Resolves to a checked-out ``SessionHandle``, ``_FREED_SLOT`` (open a
        page in the reserved slot) or None (the pool shut down).
        """
        fut = loop.create_future()
        self._waiters.append(fut)
        logger.debug(f"[POOL] Exhausted ({self._checked_out}/{self._capacity}) — waiting")
        try:
            if deadline is None:
                return await fut
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError()
            return await asyncio.wait_for(fut, remaining)
        except asyncio.TimeoutError:
            # Granted in the same tick the deadline hit: take it
            if fut.done() and not fut.cancelled():
                return fut.result()
            raise PoolExhaustedTimeout(
                f"No browser session freed within {self._acquire_timeout}s "
                f"({self._checked_out}/{self._capacity} checked out)"
            ) from None
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                self._give_back(fut.result())
            raise
        finally:
            try:
                self._waiters.remove(fut)
            except ValueError:
                pass

    async def _ensure_context(self, headless: bool) -> BrowserContext:
        async with self._browser_lock:
            if self._context is not None:
                return self._context
            self._ensure_open()
            playwright, browser = await self._launcher(headless)
            try:
                context = await browser.new_context(
                    user_agent=self._user_agent,
                    viewport={'width': 1366, 'height': 900},
                    locale='en-US',
                    timezone_id='America/New_York',
                )
                if self._block_resources:
                    await context.route("**/*", self._route_handler)
            except BaseException:
                await _close_browser(playwright, browser)
                raise
            self._playwright, self._browser, self._context = playwright, browser, context
            logger.info(
                f"[POOL] Browser started (capacity={self._capacity}, headless={headless}, "
                f"blocking={'images,fonts,media' if self._block_resources else 'none'})"
            )
            return self._context

    async def _open_page(self, headless: bool) -> Page:
        try:
            context = await self._ensure_context(headless)
            page = await context.new_page()
            await page.add_init_script(_FINGERPRINT_SCRIPT)
        except PlaywrightError as e:
            raise PoolStartupError(f"Could not start browser session: {e}") from e
        return page

    async def _route_handler(self, route) -> None:
        """Block unnecessary resources for speed."""
        if route.request.resource_type in _BLOCKED_RESOURCE_TYPES:
            await route.abort()
            return
        await route.continue_()
