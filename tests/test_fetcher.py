"""
Tests for fetcher.py and the HTTP status taxonomy in errors.py.
"""

import asyncio

import pytest
import requests
from playwright.async_api import TimeoutError as PlaywrightTimeout

from novelcrawl.errors import (
    RateLimitedError,
    TerminalFetchError,
    TransientNetworkError,
    raise_for_status,
)
from novelcrawl.fetcher import DocumentFetcher
from novelcrawl.session_pool import SessionPool

from fakes import FakeBrowser, make_launcher

URL = "https://testnovels.com/novel/abc"


class FakeHttpResponse:
    def __init__(self, status_code=200, text="", headers=None):
        self.status_code = status_code
        self.text = text
        self.content = text.encode("utf-8")
        self.headers = headers or {}


class FakeHttpSession:
    def __init__(self, result):
        self.headers = {}
        self.result = result
        self.closed = False

    def get(self, url, timeout=None):
        if isinstance(self.result, Exception):
            raise self.result
        return self.result

    def close(self):
        self.closed = True


# ====================================================================
# Status classification
# ====================================================================

class TestRaiseForStatus:

    def test_success_passes(self):
        """2xx/3xx raise nothing."""
        raise_for_status(200, URL)
        raise_for_status(304, URL)

    def test_429_is_rate_limited(self):
        """429 → RateLimitedError (a TransientNetworkError)."""
        with pytest.raises(RateLimitedError) as exc:
            raise_for_status(429, URL, {"Retry-After": "7"})
        assert exc.value.retry_after == 7.0
        assert isinstance(exc.value, TransientNetworkError)

    def test_503_with_retry_after_is_rate_limited(self):
        """503 + Retry-After → RateLimitedError."""
        with pytest.raises(RateLimitedError):
            raise_for_status(503, URL, {"retry-after": "30"})

    @pytest.mark.parametrize("status", [408, 500, 502, 503, 504])
    def test_retryable_statuses(self, status):
        """Server errors and request timeouts are transient."""
        with pytest.raises(TransientNetworkError) as exc:
            raise_for_status(status, URL)
        assert not isinstance(exc.value, RateLimitedError)

    @pytest.mark.parametrize("status", [400, 403, 404, 410])
    def test_other_client_errors_are_terminal(self, status):
        """Anything else ≥ 400 is terminal and keeps the status."""
        with pytest.raises(TerminalFetchError) as exc:
            raise_for_status(status, URL)
        assert exc.value.status == status

    def test_no_response_is_transient(self):
        """A navigation with no response is worth retrying."""
        with pytest.raises(TransientNetworkError):
            raise_for_status(None, URL)

    def test_error_message_includes_url(self):
        """str(error) names the URL."""
        with pytest.raises(TerminalFetchError) as exc:
            raise_for_status(404, URL)
        assert URL in str(exc.value)


# ====================================================================
# Rendered path
# ====================================================================

def _rendered_fetcher(routes, capacity=1):
    browser = FakeBrowser(routes)
    pool = SessionPool(capacity, launcher=make_launcher(browser))
    return DocumentFetcher(pool, timeout_seconds=5), pool, browser


class TestRenderedFetch:

    def test_returns_html_and_releases_session(self):
        """Rendered fetch returns page HTML; the session goes back idle."""
        async def scenario():
            fetcher, pool, _ = _rendered_fetcher({URL: (200, "<html>ok</html>")})
            html = await fetcher.fetch(URL, render=True)
            assert html == "<html>ok</html>"
            assert pool.checked_out == 0
            assert pool.idle_count == 1
            await pool.shutdown()

        asyncio.run(scenario())

    def test_http_error_releases_session(self):
        """A 404 page raises TerminalFetchError and the page is reused later."""
        async def scenario():
            fetcher, pool, _ = _rendered_fetcher({URL: (404, "<html>gone</html>")})
            with pytest.raises(TerminalFetchError):
                await fetcher.fetch(URL, render=True)
            assert pool.checked_out == 0
            assert pool.idle_count == 1
            await pool.shutdown()

        asyncio.run(scenario())

    def test_navigation_timeout_discards_session(self):
        """A timed-out page is transient and never re-pooled."""
        async def scenario():
            fetcher, pool, browser = _rendered_fetcher({URL: PlaywrightTimeout("Timeout 5000ms exceeded")})
            with pytest.raises(TransientNetworkError):
                await fetcher.fetch(URL, render=True)
            assert pool.checked_out == 0
            assert pool.live_count == 0
            assert browser.pages[0].is_closed()
            await pool.shutdown()

        asyncio.run(scenario())

    def test_render_without_pool_is_an_error(self):
        """Rendered fetch needs a pool."""
        async def scenario():
            with pytest.raises(RuntimeError):
                await DocumentFetcher(None).fetch(URL, render=True)

        asyncio.run(scenario())


# ====================================================================
# Static path
# ====================================================================

class TestStaticFetch:

    def test_returns_text(self):
        """Static fetch returns the response body."""
        session = FakeHttpSession(FakeHttpResponse(200, "<html>static</html>"))
        fetcher = DocumentFetcher(http_session=session, user_agent="UA-test")
        assert asyncio.run(fetcher.fetch(URL)) == "<html>static</html>"
        assert session.headers["User-Agent"] == "UA-test"
        fetcher.close()
        assert session.closed

    def test_timeout_is_transient(self):
        """requests timeouts map to TransientNetworkError."""
        fetcher = DocumentFetcher(http_session=FakeHttpSession(requests.Timeout("slow")))
        with pytest.raises(TransientNetworkError):
            asyncio.run(fetcher.fetch(URL))

    def test_connection_error_is_transient(self):
        """Connection resets map to TransientNetworkError."""
        fetcher = DocumentFetcher(http_session=FakeHttpSession(requests.ConnectionError("reset")))
        with pytest.raises(TransientNetworkError):
            asyncio.run(fetcher.fetch(URL))

    def test_404_is_terminal(self):
        """A 404 response raises TerminalFetchError."""
        fetcher = DocumentFetcher(http_session=FakeHttpSession(FakeHttpResponse(404, "nope")))
        with pytest.raises(TerminalFetchError):
            asyncio.run(fetcher.fetch(URL))

    def test_429_is_rate_limited(self):
        """A 429 response raises RateLimitedError carrying Retry-After."""
        response = FakeHttpResponse(429, "slow down", {"Retry-After": "12"})
        fetcher = DocumentFetcher(http_session=FakeHttpSession(response))
        with pytest.raises(RateLimitedError) as exc:
            asyncio.run(fetcher.fetch(URL))
        assert exc.value.retry_after == 12.0
