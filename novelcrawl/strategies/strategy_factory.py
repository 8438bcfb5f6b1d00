"""
Strategy Factory
================
Maps a novel URL to the strategy that knows how to scrape its site.

Adding a new site:
    1. Add a ``SiteSelectorConfig`` (built-in, or in a JSON sites file)
    2. Optionally subclass ``SiteStrategy`` for site-specific clean-up and
       call ``StrategyFactory.register(strategy_class)``
    3. Sites with no registered variant use the generic ``SiteStrategy``

The factory is the ONLY entry point the processor uses to pick a site.
The processor never imports a site module directly.

Usage::

    factory = StrategyFactory(load_site_configs(sites_file))
    strategy = factory.detect(url, fetcher)    # raises UnsupportedSiteError
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Type
from urllib.parse import urlparse

from ..errors import UnsupportedSiteError
from ..site_config import BUILTIN_SITES, SiteSelectorConfig
from .base_strategy import Fetcher, SiteStrategy

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Strategy Registry
# ---------------------------------------------------------------------------

# Maps site key → strategy class (code only; site data lives in the factory)
_STRATEGY_REGISTRY: Dict[str, Type[SiteStrategy]] = {}


class StrategyFactory:
    """Select a strategy by host, from an explicit site table."""

    def __init__(self, sites: Optional[Mapping[str, SiteSelectorConfig]] = None):
        self.sites: Dict[str, SiteSelectorConfig] = dict(BUILTIN_SITES if sites is None else sites)

    @staticmethod
    def register(strategy_class: Type[SiteStrategy]) -> None:
        """Register a strategy variant under its ``site_key``."""
        key = strategy_class.site_key.lower()
        if not key:
            raise ValueError(f"{strategy_class.__name__} has no site_key")
        _STRATEGY_REGISTRY[key] = strategy_class
        logger.debug(f"[STRATEGY-FACTORY] Registered strategy: {key}")

    @staticmethod
    def list_strategies() -> List[str]:
        """Site keys with a dedicated strategy class."""
        return list(_STRATEGY_REGISTRY.keys())

    def resolve_site(self, url: str) -> SiteSelectorConfig:
        """Return the site config whose hosts match ``url``.

        Raises:
            UnsupportedSiteError: no configured site claims the host.
        """
        host = urlparse(url).hostname or ""
        for site in self.sites.values():
            if site.matches_host(host):
                return site
        raise UnsupportedSiteError(f"No site configured for host {host!r}", url)

    def detect(self, url: str, fetcher: Optional[Fetcher] = None) -> SiteStrategy:
        """Instantiate the strategy for ``url``'s site.

        Args:
            url:     A novel ToC URL.
            fetcher: Document fetcher the strategy loads pages with.

        Raises:
            UnsupportedSiteError: no configured site claims the host.
        """
        site = self.resolve_site(url)
        strategy_class = _STRATEGY_REGISTRY.get(site.key.lower(), SiteStrategy)
        strategy = strategy_class(site, fetcher)
        logger.info(f"[STRATEGY-FACTORY] {site.name} → {strategy_class.__name__} (from URL: {url[:60]})")
        return strategy

    def list_sites(self) -> List[SiteSelectorConfig]:
        return sorted(self.sites.values(), key=lambda s: s.key)


# ---------------------------------------------------------------------------
# Auto-register built-in strategies on import
# ---------------------------------------------------------------------------

def _auto_register() -> None:
    from .lightnovelworld import LightNovelWorldStrategy
    from .novelfull import NovelFullStrategy

    StrategyFactory.register(LightNovelWorldStrategy)
    StrategyFactory.register(NovelFullStrategy)


_auto_register()
