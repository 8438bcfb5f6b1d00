"""
Unified Run Configuration
=========================
Single source of truth for ALL crawl defaults and runtime limits.

The CLI, the environment (``NOVELCRAWL_*`` variables) and library callers
all populate this one object; the processor reads it once per crawl.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .utils import AsyncRetryPolicy

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical defaults — the ONLY place these numbers live
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "concurrency_limit": 5,          # in-flight chapter fetches
    "pool_capacity": 5,              # browser pages kept alive
    "timeout_seconds": 30,           # per navigation / fetch
    "max_retries": 3,                # per chapter / listing page
    "retry_base_delay": 1.0,         # seconds, doubled per attempt
    "rate_limit_delay": 10.0,        # minimum wait after a rate-limit signal
    "max_retry_delay": 60.0,
    "acquire_timeout_seconds": 300,  # waiting for a free browser page
    "headless": True,
    "block_resources": True,         # images, fonts, media
    "store_path": "novels.json",
    "user_agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    ),
}

# env var → (field, parser)
_ENV_FIELDS = {
    "NOVELCRAWL_CONCURRENCY": ("concurrency_limit", int),
    "NOVELCRAWL_POOL_CAPACITY": ("pool_capacity", int),
    "NOVELCRAWL_TIMEOUT": ("timeout_seconds", int),
    "NOVELCRAWL_MAX_RETRIES": ("max_retries", int),
    "NOVELCRAWL_HEADLESS": ("headless", lambda v: v.strip().lower() not in ("0", "false", "no")),
    "NOVELCRAWL_SITES_FILE": ("sites_file", str),
    "NOVELCRAWL_STORE": ("store_path", str),
}


@dataclass
class CrawlerRunConfig:
    """
    Unified configuration consumed by every crawl subsystem.

    Populate via:
      - ``CrawlerRunConfig()``                   → all defaults
      - ``CrawlerRunConfig(concurrency_limit=2)`` → override one value
      - ``CrawlerRunConfig.from_cli_args(ns)``    → from argparse Namespace
      - ``CrawlerRunConfig.from_env()``           → from NOVELCRAWL_* variables
    """

    # ---- Concurrency ----
    concurrency_limit: int = _DEFAULTS["concurrency_limit"]
    pool_capacity: int = _DEFAULTS["pool_capacity"]

    # ---- Timeouts / retries ----
    timeout_seconds: int = _DEFAULTS["timeout_seconds"]
    max_retries: int = _DEFAULTS["max_retries"]
    retry_base_delay: float = _DEFAULTS["retry_base_delay"]
    rate_limit_delay: float = _DEFAULTS["rate_limit_delay"]
    max_retry_delay: float = _DEFAULTS["max_retry_delay"]
    acquire_timeout_seconds: float = _DEFAULTS["acquire_timeout_seconds"]

    # ---- Browser ----
    headless: bool = _DEFAULTS["headless"]
    block_resources: bool = _DEFAULTS["block_resources"]
    user_agent: str = _DEFAULTS["user_agent"]

    # ---- Sites / storage ----
    sites_file: Optional[str] = None
    store_path: str = _DEFAULTS["store_path"]
    resume: bool = True

    # ---- Output paths (None = skip) ----
    output_json: Optional[str] = None
    output_docx: Optional[str] = None

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_cli_args(cls, args, base: Optional["CrawlerRunConfig"] = None) -> "CrawlerRunConfig":
        """Build config from an argparse Namespace (``__main__.py``).

        Flags left unset (None) keep the value from ``base`` (defaults or env).
        """
        cfg = base or cls()
        overrides = {
            "concurrency_limit": getattr(args, "concurrency", None),
            "pool_capacity": getattr(args, "pool_capacity", None),
            "timeout_seconds": getattr(args, "timeout", None),
            "max_retries": getattr(args, "max_retries", None),
            "sites_file": getattr(args, "sites_file", None),
            "store_path": getattr(args, "store", None),
            "output_json": getattr(args, "output_json", None),
            "output_docx": getattr(args, "output_docx", None),
        }
        for name, value in overrides.items():
            if value is not None:
                setattr(cfg, name, value)
        if getattr(args, "headed", False):
            cfg.headless = False
        if getattr(args, "no_resume", False):
            cfg.resume = False
        return cfg

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CrawlerRunConfig":
        """Build config from ``NOVELCRAWL_*`` environment variables."""
        environ = os.environ if environ is None else environ
        cfg = cls()
        for var, (name, parse) in _ENV_FIELDS.items():
            raw = environ.get(var)
            if raw is None or raw == "":
                continue
            try:
                setattr(cfg, name, parse(raw))
            except ValueError:
                logger.warning(f"[CONFIG] Ignoring invalid {var}={raw!r}")
        return cfg

    # -----------------------------------------------------------------------
    # Derived values
    # -----------------------------------------------------------------------
    @property
    def timeout_ms(self) -> int:
        return int(self.timeout_seconds * 1000)

    @property
    def listing_parallelism(self) -> int:
        """Listing pages fetched at once — never more than the pool allows."""
        return max(1, min(self.concurrency_limit, self.pool_capacity))

    def validate(self) -> "CrawlerRunConfig":
        if self.concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1 (got {self.concurrency_limit})")
        if self.pool_capacity < 1:
            raise ValueError(f"pool_capacity must be >= 1 (got {self.pool_capacity})")
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be > 0 (got {self.timeout_seconds})")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0 (got {self.max_retries})")
        return self

    def to_retry_policy(self) -> AsyncRetryPolicy:
        """Return the retry policy shared by pagination and chapter fetches."""
        return AsyncRetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            rate_limit_delay=self.rate_limit_delay,
            max_delay=self.max_retry_delay,
        )

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self, url: str) -> None:
        """Emit a structured summary to the logger."""
        logger.info("=" * 60)
        logger.info("NOVEL CRAWL RUN CONFIG")
        logger.info("=" * 60)
        logger.info(f"  ToC URL:          {url}")
        logger.info(f"  Concurrency:      {self.concurrency_limit} chapters in flight")
        logger.info(f"  Pool Capacity:    {self.pool_capacity} browser pages")
        logger.info(f"  Timeout:          {self.timeout_seconds}s per fetch")
        logger.info(f"  Max Retries:      {self.max_retries}")
        logger.info(f"  Headless:         {self.headless}")
        if self.sites_file:
            logger.info(f"  Sites File:       {self.sites_file}")
        logger.info(f"  Store:            {self.store_path} (resume={'on' if self.resume else 'off'})")
        if self.output_json:
            logger.info(f"  JSON Output:      {self.output_json}")
        if self.output_docx:
            logger.info(f"  DOCX Output:      {self.output_docx}")
        logger.info("=" * 60)
