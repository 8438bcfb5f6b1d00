"""
Site Strategy (shared capability set)
=====================================
Selector-driven scraping logic shared by every supported site.

Capabilities:
    - ``scrape_metadata(toc_url)``                 → NovelData (no chapters)
    - ``extract_chapter_urls_from_page(soup, url)`` → ordered chapter URLs
    - ``resolve_terminal_page_number(soup)``       → last listing page (≥ 1)
    - ``fetch_listing_page(url)`` / ``fetch_chapter(url)``

Everything site-specific lives in ``SiteSelectorConfig`` (pure data).  A
site with no registered variant is served by this class as-is.

To add a site variant with custom clean-up:
    1. Subclass ``SiteStrategy`` and set ``site_key`` to the config key
    2. Override ``preprocess_html`` / ``clean_content`` as needed
    3. Register it in ``strategy_factory.py`` via ``StrategyFactory.register()``
    4. No changes to the crawler, pipeline or processor are needed.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Protocol, Tuple
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup, Tag

from ..errors import RateLimitedError, TerminalFetchError
from ..models import NovelData, NovelStatus, unique_in_order
from ..site_config import PaginationStyle, SiteSelectorConfig
from ..utils import URLNormalizer, clean_text, get_int_query_param, set_query_param

logger = logging.getLogger(__name__)

_BS_PARSER = "lxml"


class Fetcher(Protocol):
    async def fetch(self, url: str, render: bool = False) -> str:
        ...


class SiteStrategy:
    """Generic, configuration-driven strategy; variants override hooks only."""

    site_key: str = ""

    def __init__(self, site: SiteSelectorConfig, fetcher: Optional[Fetcher] = None):
        self.site = site
        self.fetcher = fetcher
        self.url_normalizer = URLNormalizer()

    @property
    def key(self) -> str:
        return self.site_key or self.site.key

    def __repr__(self) -> str:
        return f"<{type(self).__name__} site={self.site.key}>"

    # ------------------------------------------------------------------
    # URL construction (pure)
    # ------------------------------------------------------------------

    def novel_url(self, toc_url: str) -> str:
        """The novel's landing page: ToC URL without query, fragment or listing suffix."""
        parsed = urlparse(toc_url)
        path = parsed.path.rstrip('/') or '/'
        suffix = self.site.listing_path_suffix.rstrip('/')
        if suffix and path.endswith(suffix):
            path = path[: -len(suffix)] or '/'
        return urlunparse((parsed.scheme, parsed.netloc, path, '', '', ''))

    def listing_page_url(self, toc_url: str, page: int) -> str:
        """URL of listing page ``page`` (1-based)."""
        listing = self.novel_url(toc_url).rstrip('/') + self.site.listing_path_suffix
        if self.site.pagination_style == PaginationStyle.SINGLE:
            return listing
        return set_query_param(listing, self.site.page_query_param, page)

    def listing_page_number(self, page_url: str) -> int:
        """Inverse of ``listing_page_url``: the page number a listing URL points at."""
        if self.site.pagination_style == PaginationStyle.SINGLE:
            return 1
        page = get_int_query_param(page_url, self.site.page_query_param)
        return page if page is not None and page >= 1 else 1

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def preprocess_html(self, html: str) -> str:
        """Hook: fix up raw markup before parsing."""
        return html

    def parse(self, html: str) -> BeautifulSoup:
        return BeautifulSoup(self.preprocess_html(html), _BS_PARSER)

    def check_rate_limited(self, soup: BeautifulSoup, url: str) -> None:
        """Raise ``RateLimitedError`` when the page is a throttling/challenge page."""
        title = soup.title.get_text(strip=True) if soup.title else ""
        for marker in self.site.rate_limit_markers:
            if marker and marker.lower() in title.lower():
                raise RateLimitedError(f"Rate-limit page served ({title[:60]!r})", url)

    async def load(self, url: str) -> BeautifulSoup:
        """Fetch (rendered or static, per site config) and parse one page."""
        if self.fetcher is None:
            raise RuntimeError(f"{self!r} has no fetcher")
        html = await self.fetcher.fetch(url, render=self.site.requires_rendering)
        soup = self.parse(html)
        self.check_rate_limited(soup, url)
        return soup

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def scrape_metadata(self, toc_url: str) -> NovelData:
        """Load the novel page and apply metadata selectors."""
        url = self.novel_url(toc_url)
        logger.info(f"[STRATEGY] {self.key}: loading metadata from {url}")
        soup = await self.load(url)
        return self.parse_metadata(soup, toc_url)

    def parse_metadata(self, soup: BeautifulSoup, toc_url: str) -> NovelData:
        """Absent selector matches yield empty fields, never an error."""
        sel = self.site.selectors
        novel = NovelData(toc_url=toc_url, site_key=self.key)
        novel.title = self._select_text(soup, sel.title)
        novel.author = self._select_text(soup, sel.author)
        novel.description = self._select_text(soup, sel.description, multiline=True)
        novel.genres = unique_in_order(self._select_all_text(soup, sel.genres))
        novel.status = NovelStatus.parse(self._select_text(soup, sel.status))
        novel.reported_chapter_count = _parse_count(self._select_text(soup, sel.chapter_count))
        if not novel.title:
            logger.warning(f"[STRATEGY] {self.key}: no title found at {toc_url}")
        return novel

    # ------------------------------------------------------------------
    # Listing pages
    # ------------------------------------------------------------------

    async def fetch_listing_page(self, url: str) -> BeautifulSoup:
        return await self.load(url)

    def extract_chapter_urls_from_page(self, soup: BeautifulSoup, page_url: str) -> List[str]:
        """Chapter links in document order, absolute and normalized."""
        selector = self.site.selectors.chapter_link
        if not selector:
            return []
        urls: List[str] = []
        for node in soup.select(selector):
            anchor = node if node.name == 'a' else node.find('a')
            if not isinstance(anchor, Tag):
                continue
            href = anchor.get('href')
            if not href:
                continue
            normalized = self.url_normalizer.normalize(str(href), base_url=page_url)
            if normalized:
                urls.append(normalized)
        return urls

    def resolve_terminal_page_number(self, soup: BeautifulSoup) -> int:
        """
        Last listing page number, read from the pagination control.

        - fewer than two pagination items → 1
        - full control (item count == ``full_pagination_item_count``, or
          no count configured) → the dedicated last-page link
        - condensed "…" control → the second-to-last item's link
        - highest page number linked anywhere in the control as a fallback
        - anything else → 1
        """
        if self.site.pagination_style == PaginationStyle.SINGLE:
            return 1
        sel = self.site.selectors
        items = soup.select(sel.pagination_items) if sel.pagination_items else []
        if len(items) < 2:
            return 1

        full_count = self.site.full_pagination_item_count
        candidates: List[Optional[Tag]] = []
        if (full_count is None or len(items) == full_count) and sel.last_page_link:
            candidates.append(soup.select_one(sel.last_page_link))
        if full_count is None or len(items) != full_count:
            candidates.append(_anchor_of(items[-2]))

        for link in candidates:
            page = self._page_number_from_link(link)
            if page:
                return page

        numbers = [self._page_number_from_link(_anchor_of(item)) for item in items]
        numbers = [n for n in numbers if n]
        if numbers:
            return max(numbers)

        logger.warning(
            f"[STRATEGY] {self.key}: unrecognised pagination layout "
            f"({len(items)} items) — assuming a single page"
        )
        return 1

    def _page_number_from_link(self, link: Optional[Tag]) -> Optional[int]:
        if link is None:
            return None
        href = link.get('href')
        if not href:
            return None
        absolute = urljoin(self.site.base_url + '/', str(href).strip())
        page = get_int_query_param(absolute, self.site.page_query_param)
        if page is not None and page >= 1:
            return page
        return None

    # ------------------------------------------------------------------
    # Chapters
    # ------------------------------------------------------------------

    async def fetch_chapter(self, url: str) -> Tuple[str, str]:
        """Load a chapter page; returns ``(title, content_html)``."""
        soup = await self.load(url)
        return self.extract_chapter(soup, url)

    def extract_chapter(self, soup: BeautifulSoup, url: str) -> Tuple[str, str]:
        """
        Raises:
            TerminalFetchError: the content selector matched nothing, or only
                whitespace once excluded elements were removed.
        """
        sel = self.site.selectors
        node = soup.select_one(sel.chapter_content) if sel.chapter_content else None
        if node is None:
            raise TerminalFetchError("Chapter content not found on page", url)

        for selector in sel.content_exclude:
            for element in node.select(selector):
                element.decompose()
        self.clean_content(node)

        if not node.get_text(strip=True):
            raise TerminalFetchError("Chapter content is empty", url)

        title = self._select_text(soup, sel.chapter_title)
        if not title and soup.title:
            title = clean_text(soup.title.get_text())
        return title, node.decode_contents().strip()

    def clean_content(self, node: Tag) -> None:
        """Hook: strip site-specific junk from the content node in place."""

    # ------------------------------------------------------------------
    # Selector helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _select_text(soup: BeautifulSoup, selector: str, multiline: bool = False) -> str:
        if not selector:
            return ""
        node = soup.select_one(selector)
        if node is None:
            return ""
        if multiline:
            lines = [clean_text(line) for line in node.get_text("\n").split("\n")]
            return "\n".join(line for line in lines if line)
        return clean_text(node.get_text(" "))

    @staticmethod
    def _select_all_text(soup: BeautifulSoup, selector: str) -> List[str]:
        if not selector:
            return []
        texts = [clean_text(node.get_text(" ")) for node in soup.select(selector)]
        return [t for t in texts if t]


def _anchor_of(node: Optional[Tag]) -> Optional[Tag]:
    if node is None:
        return None
    if node.name == 'a':
        return node
    anchor = node.find('a')
    return anchor if isinstance(anchor, Tag) else None


def _parse_count(text: str) -> Optional[int]:
    match = re.search(r'\d[\d,]*', text or "")
    if not match:
        return None
    return int(match.group(0).replace(',', ''))
