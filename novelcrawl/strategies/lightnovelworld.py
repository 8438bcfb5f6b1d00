"""
Light Novel World Strategy
==========================
JavaScript-rendered site behind a bot challenge; pages are loaded through
the session pool.

Site quirks handled here:
- Chapter bodies carry hidden anti-scrape paragraphs (``display:none``
  inline styles, or invisible ``<i>``/``<span>`` filler) and a plain-text
  watermark naming the site.
- Some mirrors entity-encode ordinary letters in the chapter markup.
"""

from __future__ import annotations

import logging
import re

from bs4 import Tag

from .base_strategy import SiteStrategy

logger = logging.getLogger(__name__)

_HIDDEN_STYLE = re.compile(r'display\s*:\s*none|visibility\s*:\s*hidden', re.I)

_WATERMARK = re.compile(
    r'(light\s*novel\s*world|lightnovelworld|webnovelpub|lightnovelpub)'
    r'(\s*\.\s*(com|co|pro|vip))?',
    re.I,
)

# &#97; / &#x61; for plain ASCII letters and digits only
_OBFUSCATED_ENTITY = re.compile(r'&#(x[0-9a-fA-F]{2}|\d{2,3});')


def _decode_alnum_entity(match: re.Match) -> str:
    raw = match.group(1)
    code = int(raw[1:], 16) if raw[0] in 'xX' else int(raw)
    char = chr(code)
    return char if char.isascii() and char.isalnum() else match.group(0)


class LightNovelWorldStrategy(SiteStrategy):
    site_key = "lightnovelworld"

    def preprocess_html(self, html: str) -> str:
        return _OBFUSCATED_ENTITY.sub(_decode_alnum_entity, html)

    def clean_content(self, node: Tag) -> None:
        removed = 0
        for element in node.find_all(style=_HIDDEN_STYLE):
            element.decompose()
            removed += 1
        for paragraph in node.find_all('p'):
            text = paragraph.get_text(" ", strip=True)
            if text and _WATERMARK.search(text) and len(text) < 120:
                paragraph.decompose()
                removed += 1
        if removed:
            logger.debug(f"[STRATEGY] {self.key}: removed {removed} hidden/watermark element(s)")
