"""
Site Selector Configuration
===========================
Declarative, read-only description of how to scrape each supported site.

Selectors are CSS (BeautifulSoup ``select``).  Adding a site means adding a
``SiteSelectorConfig`` — either to ``BUILTIN_SITES`` or to a JSON sites file
loaded with ``load_site_configs()`` — never new crawler control flow.

JSON sites file format::

    {
      "sites": [
        {
          "key": "examplenovels",
          "name": "Example Novels",
          "hosts": ["examplenovels.com"],
          "base_url": "https://examplenovels.com",
          "requires_rendering": false,
          "pagination_style": "query",
          "page_query_param": "page",
          "selectors": {"title": "h1", "chapter_link": "ul.chapters a", ...}
        }
      ]
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .errors import SiteConfigError

logger = logging.getLogger(__name__)

_DEFAULT_RATE_LIMIT_MARKERS = ("Too Many Requests", "Rate Limited")


class PaginationStyle(str, Enum):
    """How a site spreads its chapter list across listing pages."""
    QUERY = "query"      # ?page=N
    SINGLE = "single"    # every chapter on the ToC page


@dataclass(frozen=True)
class SelectorSet:
    """Named CSS selectors for one site. Empty string = not available."""
    title: str = ""
    author: str = ""
    description: str = ""
    genres: str = ""
    status: str = ""
    chapter_count: str = ""
    pagination_items: str = ""
    last_page_link: str = ""
    chapter_link: str = ""
    chapter_content: str = ""
    chapter_title: str = ""
    content_exclude: Tuple[str, ...] = ("script", "style", "ins", "iframe")


@dataclass(frozen=True)
class SiteSelectorConfig:
    """Immutable scraping configuration for one site, keyed by ``key``."""
    key: str
    name: str
    hosts: Tuple[str, ...]
    base_url: str
    selectors: SelectorSet
    requires_rendering: bool = False
    pagination_style: PaginationStyle = PaginationStyle.QUERY
    page_query_param: str = "page"
    listing_path_suffix: str = ""
    # Item count that identifies the site's "full" pagination control
    # (first/prev/numbers/next/last); any other count is the condensed "…" form.
    full_pagination_item_count: Optional[int] = None
    rate_limit_markers: Tuple[str, ...] = _DEFAULT_RATE_LIMIT_MARKERS

    def matches_host(self, host: str) -> bool:
        host = (host or "").lower().split(":")[0]
        if host.startswith("www."):
            host = host[4:]
        return any(host == h or host.endswith("." + h) for h in self.hosts)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SiteSelectorConfig":
        """Build a config from parsed JSON; raises ``SiteConfigError``."""
        try:
            selector_names = {f.name for f in fields(SelectorSet)}
            raw_selectors = dict(data.get("selectors", {}))
            unknown = set(raw_selectors) - selector_names
            if unknown:
                raise SiteConfigError(
                    f"Unknown selector(s) for site {data.get('key')!r}: {sorted(unknown)}"
                )
            if "content_exclude" in raw_selectors:
                raw_selectors["content_exclude"] = tuple(raw_selectors["content_exclude"])
            hosts = tuple(h.lower() for h in data["hosts"])
            if not hosts:
                raise SiteConfigError(f"Site {data.get('key')!r} lists no hosts")
            full_count = data.get("full_pagination_item_count")
            return cls(
                key=str(data["key"]),
                name=str(data.get("name", data["key"])),
                hosts=hosts,
                base_url=str(data["base_url"]).rstrip("/"),
                selectors=SelectorSet(**raw_selectors),
                requires_rendering=bool(data.get("requires_rendering", False)),
                pagination_style=PaginationStyle(data.get("pagination_style", "query")),
                page_query_param=str(data.get("page_query_param", "page")),
                listing_path_suffix=str(data.get("listing_path_suffix", "")),
                full_pagination_item_count=int(full_count) if full_count is not None else None,
                rate_limit_markers=tuple(
                    data.get("rate_limit_markers", _DEFAULT_RATE_LIMIT_MARKERS)
                ),
            )
        except KeyError as e:
            raise SiteConfigError(f"Site config missing required field {e}") from e
        except (TypeError, ValueError) as e:
            raise SiteConfigError(f"Invalid site config {data.get('key')!r}: {e}") from e


# ---------------------------------------------------------------------------
# Built-in sites
# ---------------------------------------------------------------------------

LIGHTNOVELWORLD = SiteSelectorConfig(
    key="lightnovelworld",
    name="Light Novel World",
    hosts=("lightnovelworld.com", "lightnovelworld.co", "webnovelpub.pro", "lightnovelpub.vip"),
    base_url="https://www.lightnovelworld.com",
    requires_rendering=True,
    pagination_style=PaginationStyle.QUERY,
    page_query_param="page",
    listing_path_suffix="/chapters",
    full_pagination_item_count=6,
    rate_limit_markers=("Too Many Requests", "Just a moment", "Access denied"),
    selectors=SelectorSet(
        title="h1.novel-title",
        author="div.author a span, div.author span[itemprop='author']",
        description="div.summary div.content",
        genres="div.categories ul li a",
        status="div.header-stats span:last-child strong",
        chapter_count="div.header-stats span:first-child strong",
        pagination_items="div.pagination-container ul li",
        last_page_link="div.pagination-container li.PagedList-skipToLast a",
        chapter_link="ul.chapter-list li a",
        chapter_content="#chapter-container",
        chapter_title="span.chapter-title",
        content_exclude=("script", "style", "ins", "iframe", "div.adsbox", "p.ad-text"),
    ),
)

NOVELFULL = SiteSelectorConfig(
    key="novelfull",
    name="Novel Full",
    hosts=("novelfull.com", "novelfull.net"),
    base_url="https://novelfull.com",
    requires_rendering=False,
    pagination_style=PaginationStyle.QUERY,
    page_query_param="page",
    rate_limit_markers=("Too Many Requests", "Just a moment"),
    selectors=SelectorSet(
        title="h3.title",
        author="div.info a[href*='/author/']",
        description="div.desc-text",
        genres="div.info a[href*='/genre/']",
        status="div.info a[href*='status'], div.info a[href*='/completed'], div.info a[href*='/ongoing']",
        pagination_items="ul.pagination li",
        last_page_link="ul.pagination li.last a",
        chapter_link="ul.list-chapter li a",
        chapter_content="#chapter-content",
        chapter_title="a.chapter-title, span.chapter-text",
        content_exclude=("script", "style", "ins", "iframe", "div.ads", "div[align='left']"),
    ),
)

BUILTIN_SITES: Dict[str, SiteSelectorConfig] = {
    LIGHTNOVELWORLD.key: LIGHTNOVELWORLD,
    NOVELFULL.key: NOVELFULL,
}


def load_site_configs(
    path: Optional[str] = None,
    base: Optional[Mapping[str, SiteSelectorConfig]] = None,
) -> Dict[str, SiteSelectorConfig]:
    """Return the site table: built-ins, overridden/extended by a JSON file.

    Args:
        path: Optional JSON sites file.
        base: Starting table (defaults to ``BUILTIN_SITES``).

    Raises:
        SiteConfigError: file unreadable or malformed.
    """
    sites: Dict[str, SiteSelectorConfig] = dict(BUILTIN_SITES if base is None else base)
    if not path:
        return sites

    file_path = Path(path)
    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise SiteConfigError(f"Cannot read sites file {file_path}: {e}") from e

    entries: Iterable[Mapping[str, Any]] = data.get("sites", []) if isinstance(data, dict) else data
    for entry in entries:
        site = SiteSelectorConfig.from_dict(entry)
        if site.key in sites:
            logger.info(f"[SITES] Overriding built-in site: {site.key}")
        sites[site.key] = site
    logger.info(f"[SITES] {len(sites)} site(s) configured (file: {file_path})")
    return sites
