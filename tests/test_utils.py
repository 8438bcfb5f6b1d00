"""
Tests for utils.py — URL normalisation, query helpers and the retry policy.
"""

import asyncio

import pytest

from novelcrawl.errors import RateLimitedError, TerminalFetchError, TransientNetworkError
from novelcrawl.utils import (
    AsyncRetryPolicy,
    URLNormalizer,
    clean_text,
    get_int_query_param,
    is_valid_url,
    set_query_param,
)


class TestURLNormalizer:

    @pytest.mark.parametrize("url,expected", [
        ("https://Example.com/novel/abc/", "https://example.com/novel/abc"),
        ("https://example.com/novel/abc#comments", "https://example.com/novel/abc"),
        ("https://example.com//novel///abc", "https://example.com/novel/abc"),
        ("https://example.com/novel/abc?utm_source=x&page=2", "https://example.com/novel/abc?page=2"),
        ("https://example.com/", "https://example.com/"),
    ])
    def test_normalize(self, url, expected):
        assert URLNormalizer().normalize(url) == expected

    def test_relative_resolved_against_base(self):
        normalized = URLNormalizer().normalize("/novel/abc/chapter-1", base_url="https://example.com/novel/abc?page=2")
        assert normalized == "https://example.com/novel/abc/chapter-1"

    @pytest.mark.parametrize("url", ["", "javascript:void(0)", "#top", "mailto:a@b.c", "ftp://example.com/x"])
    def test_rejects_non_http(self, url):
        assert URLNormalizer().normalize(url) is None


class TestQueryHelpers:

    def test_set_query_param_replaces(self):
        assert set_query_param("https://a.com/n?page=1&x=y", "page", 4) == "https://a.com/n?page=4&x=y"

    def test_set_query_param_adds(self):
        assert set_query_param("https://a.com/n", "page", 2) == "https://a.com/n?page=2"

    @pytest.mark.parametrize("url,expected", [
        ("https://a.com/n?page=12", 12),
        ("https://a.com/n?page=abc", None),
        ("https://a.com/n", None),
    ])
    def test_get_int_query_param(self, url, expected):
        assert get_int_query_param(url, "page") == expected

    @pytest.mark.parametrize("url,expected", [
        ("https://novelfull.com/x.html", True),
        ("http://novelfull.com", True),
        ("https://", False),
        ("ftp://novelfull.com/x", False),
        ("https://[broken/x", False),
    ])
    def test_is_valid_url(self, url, expected):
        assert is_valid_url(url) is expected

    def test_clean_text(self):
        assert clean_text("  a \n\t b  ") == "a b"
        assert clean_text(None) == ""


class TestAsyncRetryPolicy:

    def test_delay_grows_exponentially(self):
        policy = AsyncRetryPolicy(base_delay=1.0, max_delay=60, jitter=False)
        assert [policy.calculate_delay(a) for a in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_capped(self):
        policy = AsyncRetryPolicy(base_delay=1.0, max_delay=5, jitter=False)
        assert policy.calculate_delay(10) == 5

    def test_rate_limit_floor(self):
        """A rate-limit signal waits at least rate_limit_delay or Retry-After."""
        policy = AsyncRetryPolicy(base_delay=1.0, rate_limit_delay=10, max_delay=60, jitter=False)
        assert policy.calculate_delay(0, RateLimitedError("429")) == 10
        assert policy.calculate_delay(0, RateLimitedError("429", retry_after=30)) == 30
        assert policy.calculate_delay(0, TransientNetworkError("503")) == 1.0

    def test_run_retries_transient_then_succeeds(self):
        calls = []
        retries = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise TransientNetworkError("reset")
            return "ok"

        policy = AsyncRetryPolicy(max_retries=3, base_delay=0, jitter=False)
        result = asyncio.run(policy.run(flaky, on_retry=lambda attempt, e: retries.append(attempt)))
        assert result == "ok"
        assert len(calls) == 3
        assert retries == [1, 2]

    def test_run_gives_up_after_max_retries(self):
        calls = []

        async def always_down():
            calls.append(1)
            raise TransientNetworkError("HTTP 503")

        policy = AsyncRetryPolicy(max_retries=2, base_delay=0, jitter=False)
        with pytest.raises(TransientNetworkError):
            asyncio.run(policy.run(always_down))
        assert len(calls) == 3

    def test_run_does_not_retry_terminal(self):
        calls = []

        async def gone():
            calls.append(1)
            raise TerminalFetchError("HTTP 404", status=404)

        with pytest.raises(TerminalFetchError):
            asyncio.run(AsyncRetryPolicy(base_delay=0).run(gone))
        assert len(calls) == 1
