"""
Novel Store
===========
Persists crawled novels to a single JSON file, keyed by ToC URL.

Responsibilities:
    1. Upsert a ``NovelAssembly`` after a crawl (same URL → replaced, not duplicated)
    2. Hand back the previous assembly so a re-run can resume
    3. List what has been crawled
    4. Forget one novel, or all of them

Usage::

    store = JsonNovelStore("novels.json")
    previous = store.get(toc_url)
    result = await processor.process_novel(toc_url, resume_from=previous)
    store.upsert(result.assembly)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import NovelAssembly
from .utils import URLNormalizer

logger = logging.getLogger(__name__)

_FORMAT_VERSION = 1


class JsonNovelStore:
    """File-backed store of ``NovelAssembly`` records."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._normalizer = URLNormalizer()

    # ── Public API ────────────────────────────────────────────────

    def upsert(self, assembly: NovelAssembly) -> None:
        """Insert or replace the record for ``assembly.toc_url``."""
        data = self._load()
        key = self._key(assembly.toc_url)
        replaced = key in data
        data[key] = assembly.to_dict()
        self._save(data)
        verb = "Updated" if replaced else "Saved"
        logger.info(f"[STORE] {verb} {assembly.novel.title or key} in {self.path}")

    def get(self, toc_url: str) -> Optional[NovelAssembly]:
        record = self._load().get(self._key(toc_url))
        if record is None:
            return None
        return NovelAssembly.from_dict(record)

    def list_novels(self) -> List[Dict[str, Any]]:
        """One summary row per stored novel, sorted by title."""
        rows = []
        for key, record in self._load().items():
            assembly = NovelAssembly.from_dict(record)
            rows.append({
                "toc_url": key,
                "title": assembly.novel.title,
                "author": assembly.novel.author,
                "chapters": len(assembly.chapters),
                "fetched": assembly.fetched_count,
                "outcome": assembly.outcome.value,
                "crawled_at": assembly.crawled_at,
            })
        return sorted(rows, key=lambda r: (r["title"] or r["toc_url"]).lower())

    def remove(self, toc_url: str) -> bool:
        data = self._load()
        if data.pop(self._key(toc_url), None) is None:
            return False
        self._save(data)
        logger.info(f"[STORE] Removed {toc_url} from {self.path}")
        return True

    def clear(self) -> int:
        """Drop every stored novel; returns how many were removed."""
        count = len(self._load())
        self._save({})
        logger.info(f"[STORE] Cleared {count} novel(s) from {self.path}")
        return count

    # ── Internals ─────────────────────────────────────────────────

    def _key(self, toc_url: str) -> str:
        return self._normalizer.normalize(toc_url) or toc_url

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning(f"[STORE] Corrupt store file {self.path}: {exc} — starting empty")
            return {}
        novels = raw.get("novels") if isinstance(raw, dict) else None
        if not isinstance(novels, dict):
            logger.warning(f"[STORE] Unrecognised store layout in {self.path} — starting empty")
            return {}
        return novels

    def _save(self, novels: Dict[str, Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"version": _FORMAT_VERSION, "novels": novels}
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)


def export_json(assembly: NovelAssembly, filepath: str) -> str:
    """Write one assembly to its own JSON file; returns the absolute path."""
    output_path = Path(filepath)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(assembly.to_dict(), f, indent=2, ensure_ascii=False)
    logger.info(f"[STORE] Exported JSON to {output_path.absolute()}")
    return str(output_path.absolute())
