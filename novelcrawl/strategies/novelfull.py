"""
NovelFull Strategy
==================
Server-rendered site; plain HTTP fetches are enough.

The chapter title lives in the ``title`` attribute of ``a.chapter-title``
more reliably than in its text, and chapter bodies end with a boilerplate
"report broken links" paragraph.
"""

from __future__ import annotations

import re
from typing import Tuple

from bs4 import BeautifulSoup, Tag

from ..utils import clean_text
from .base_strategy import SiteStrategy

_BOILERPLATE = re.compile(
    r'if you find any errors|report chapter|read latest chapters at|novelfull',
    re.I,
)


class NovelFullStrategy(SiteStrategy):
    site_key = "novelfull"

    def extract_chapter(self, soup: BeautifulSoup, url: str) -> Tuple[str, str]:
        title, content = super().extract_chapter(soup, url)
        anchor = soup.select_one("a.chapter-title[title]")
        if anchor is not None:
            title = clean_text(str(anchor.get("title", ""))) or title
        return title, content

    def clean_content(self, node: Tag) -> None:
        for paragraph in node.find_all('p'):
            text = paragraph.get_text(" ", strip=True)
            if text and len(text) < 200 and _BOILERPLATE.search(text):
                paragraph.decompose()
