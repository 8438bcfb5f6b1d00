"""
Tests for run_config.py.
"""

import argparse

import pytest

from novelcrawl.run_config import CrawlerRunConfig
from novelcrawl.utils import AsyncRetryPolicy


class TestDefaults:

    def test_defaults_are_valid(self):
        cfg = CrawlerRunConfig().validate()
        assert cfg.concurrency_limit == 5
        assert cfg.pool_capacity == 5
        assert cfg.headless is True
        assert cfg.resume is True
        assert cfg.timeout_ms == 30000

    def test_listing_parallelism_capped_by_pool(self):
        """Listing pages never outnumber browser pages."""
        assert CrawlerRunConfig(concurrency_limit=8, pool_capacity=3).listing_parallelism == 3
        assert CrawlerRunConfig(concurrency_limit=2, pool_capacity=5).listing_parallelism == 2

    def test_retry_policy(self):
        cfg = CrawlerRunConfig(max_retries=4, retry_base_delay=0.5, rate_limit_delay=20)
        policy = cfg.to_retry_policy()
        assert isinstance(policy, AsyncRetryPolicy)
        assert policy.max_retries == 4
        assert policy.base_delay == 0.5
        assert policy.rate_limit_delay == 20

    @pytest.mark.parametrize("field,value", [
        ("concurrency_limit", 0),
        ("pool_capacity", 0),
        ("timeout_seconds", 0),
        ("max_retries", -1),
    ])
    def test_validate_rejects(self, field, value):
        with pytest.raises(ValueError):
            CrawlerRunConfig(**{field: value}).validate()


class TestFromEnv:

    def test_reads_variables(self):
        cfg = CrawlerRunConfig.from_env({
            "NOVELCRAWL_CONCURRENCY": "7",
            "NOVELCRAWL_POOL_CAPACITY": "2",
            "NOVELCRAWL_HEADLESS": "false",
            "NOVELCRAWL_STORE": "/tmp/n.json",
        })
        assert cfg.concurrency_limit == 7
        assert cfg.pool_capacity == 2
        assert cfg.headless is False
        assert cfg.store_path == "/tmp/n.json"

    def test_invalid_value_keeps_default(self):
        """A malformed number is ignored, not fatal."""
        cfg = CrawlerRunConfig.from_env({"NOVELCRAWL_CONCURRENCY": "lots", "NOVELCRAWL_TIMEOUT": ""})
        assert cfg.concurrency_limit == 5
        assert cfg.timeout_seconds == 30


class TestFromCliArgs:

    def test_unset_flags_keep_base(self):
        """Only flags the user passed override the base config."""
        base = CrawlerRunConfig(concurrency_limit=9, store_path="env.json")
        args = argparse.Namespace(concurrency=None, pool_capacity=3, timeout=None, max_retries=None,
                                  sites_file=None, store=None, output_json="out.json", output_docx=None,
                                  headed=False, no_resume=True)
        cfg = CrawlerRunConfig.from_cli_args(args, base)
        assert cfg.concurrency_limit == 9
        assert cfg.pool_capacity == 3
        assert cfg.store_path == "env.json"
        assert cfg.output_json == "out.json"
        assert cfg.resume is False
        assert cfg.headless is True

    def test_headed_flag(self):
        cfg = CrawlerRunConfig.from_cli_args(argparse.Namespace(headed=True))
        assert cfg.headless is False
