"""
Novel Data Model
================
In-memory aggregates produced by one crawl.

- ``NovelData``      — metadata + ordered, de-duplicated chapter URLs
- ``ChapterResult``  — outcome of fetching one chapter
- ``NovelAssembly``  — what a finished crawl hands downstream
- ``ProgressEvent``  — observability stream item
- ``ProcessResult``  — success / partial / failed-to-start wrapper

Serialization (``to_dict`` / ``from_dict``) is used by the JSON store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .errors import CrawlError


class NovelStatus(str, Enum):
    """Publication status as reported by the site."""
    ONGOING = "ongoing"
    COMPLETED = "completed"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, text: str) -> "NovelStatus":
        lowered = (text or "").strip().lower()
        if not lowered:
            return cls.UNKNOWN
        if "complete" in lowered or "finished" in lowered or "end" == lowered:
            return cls.COMPLETED
        if "ongoing" in lowered or "on going" in lowered or "serial" in lowered:
            return cls.ONGOING
        return cls.UNKNOWN


class FetchStatus(str, Enum):
    """Lifecycle of a single chapter fetch."""
    PENDING = "pending"
    FETCHED = "fetched"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"


class AssemblyOutcome(str, Enum):
    """What the caller is told about a crawl."""
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED_TO_START = "failed_to_start"


class ProcessorState(str, Enum):
    """Novel processor state machine."""
    INIT = "init"
    METADATA_FETCHED = "metadata_fetched"
    PAGINATION_RESOLVED = "pagination_resolved"
    CHAPTER_URLS_COLLECTED = "chapter_urls_collected"
    CHAPTERS_FETCHED = "chapters_fetched"
    ASSEMBLED = "assembled"
    FAILED = "failed"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def unique_in_order(urls: Iterable[str]) -> List[str]:
    """Drop repeated entries, keeping the first occurrence's position."""
    seen = set()
    ordered: List[str] = []
    for url in urls:
        if url and url not in seen:
            seen.add(url)
            ordered.append(url)
    return ordered


@dataclass
class NovelData:
    """Working aggregate for one novel; owned by the processor during a crawl."""
    toc_url: str = ""
    title: str = ""
    author: str = ""
    description: str = ""
    genres: List[str] = field(default_factory=list)
    status: NovelStatus = NovelStatus.UNKNOWN
    chapter_urls: List[str] = field(default_factory=list)
    last_toc_page_url: str = ""
    total_chapters: int = 0
    reported_chapter_count: Optional[int] = None
    site_key: str = ""

    def set_chapter_urls(self, urls: Iterable[str]) -> None:
        """Replace the chapter list; keeps ``total_chapters`` in step."""
        self.chapter_urls = unique_in_order(urls)
        self.total_chapters = len(self.chapter_urls)

    def to_dict(self) -> dict:
        return {
            'toc_url': self.toc_url,
            'title': self.title,
            'author': self.author,
            'description': self.description,
            'genres': list(self.genres),
            'status': self.status.value,
            'chapter_urls': list(self.chapter_urls),
            'last_toc_page_url': self.last_toc_page_url,
            'total_chapters': self.total_chapters,
            'reported_chapter_count': self.reported_chapter_count,
            'site_key': self.site_key,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NovelData":
        novel = cls(
            toc_url=data.get('toc_url', ''),
            title=data.get('title', ''),
            author=data.get('author', ''),
            description=data.get('description', ''),
            genres=list(data.get('genres', [])),
            status=NovelStatus(data.get('status', NovelStatus.UNKNOWN.value)),
            last_toc_page_url=data.get('last_toc_page_url', ''),
            reported_chapter_count=data.get('reported_chapter_count'),
            site_key=data.get('site_key', ''),
        )
        novel.set_chapter_urls(data.get('chapter_urls', []))
        return novel


@dataclass
class ChapterResult:
    """Outcome of fetching one chapter. ``content`` is None unless fetched."""
    url: str
    number: int
    title: str = ""
    content: Optional[str] = None
    status: FetchStatus = FetchStatus.PENDING
    error: str = ""
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.status == FetchStatus.FETCHED

    @property
    def failed(self) -> bool:
        return self.status in (FetchStatus.FAILED_RETRYABLE, FetchStatus.FAILED_TERMINAL)

    def mark_fetched(self, title: str, content: str) -> None:
        self.title = title
        self.content = content
        self.status = FetchStatus.FETCHED
        self.error = ""

    def mark_failed(self, error: str, terminal: bool) -> None:
        self.content = None
        self.error = error
        self.status = FetchStatus.FAILED_TERMINAL if terminal else FetchStatus.FAILED_RETRYABLE

    def to_dict(self) -> dict:
        return {
            'url': self.url,
            'number': self.number,
            'title': self.title,
            'content': self.content,
            'status': self.status.value,
            'error': self.error,
            'attempts': self.attempts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChapterResult":
        return cls(
            url=data['url'],
            number=int(data['number']),
            title=data.get('title', ''),
            content=data.get('content'),
            status=FetchStatus(data.get('status', FetchStatus.PENDING.value)),
            error=data.get('error', ''),
            attempts=int(data.get('attempts', 0)),
        )


@dataclass
class NovelAssembly:
    """Final result of one crawl: metadata plus ordered per-chapter outcomes."""
    novel: NovelData
    chapters: List[ChapterResult] = field(default_factory=list)
    failed_listing_pages: List[int] = field(default_factory=list)
    crawled_at: str = field(default_factory=_utc_now)

    @property
    def toc_url(self) -> str:
        return self.novel.toc_url

    @property
    def chapter_urls(self) -> List[str]:
        return list(self.novel.chapter_urls)

    @property
    def failed_chapters(self) -> List[ChapterResult]:
        return [c for c in self.chapters if not c.ok]

    @property
    def fetched_count(self) -> int:
        return sum(1 for c in self.chapters if c.ok)

    @property
    def missing_chapter_count(self) -> int:
        """Chapters the site claims to have that the crawl did not discover."""
        reported = self.novel.reported_chapter_count
        if reported is None:
            return 0
        return max(0, reported - self.novel.total_chapters)

    @property
    def outcome(self) -> AssemblyOutcome:
        if self.failed_chapters or self.failed_listing_pages or self.missing_chapter_count:
            return AssemblyOutcome.PARTIAL
        return AssemblyOutcome.SUCCEEDED

    def summary(self) -> str:
        total = len(self.chapters)
        failed = len(self.failed_chapters)
        text = f"{self.novel.title or self.toc_url}: {total - failed}/{total} chapters fetched"
        if self.failed_listing_pages:
            pages = ', '.join(str(p) for p in self.failed_listing_pages)
            text += f", listing pages failed: {pages}"
        if self.missing_chapter_count:
            text += f", {self.missing_chapter_count} chapters missing from listing"
        return text

    def to_dict(self) -> dict:
        return {
            'novel': self.novel.to_dict(),
            'chapters': [c.to_dict() for c in self.chapters],
            'failed_listing_pages': list(self.failed_listing_pages),
            'crawled_at': self.crawled_at,
            'outcome': self.outcome.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NovelAssembly":
        return cls(
            novel=NovelData.from_dict(data.get('novel', {})),
            chapters=[ChapterResult.from_dict(c) for c in data.get('chapters', [])],
            failed_listing_pages=[int(p) for p in data.get('failed_listing_pages', [])],
            crawled_at=data.get('crawled_at') or _utc_now(),
        )


@dataclass
class ProgressEvent:
    """One item of the progress stream (site resolved, page N/M, chapter K/total)."""
    kind: str
    message: str = ""
    current: int = 0
    total: int = 0
    url: str = ""


@dataclass
class ProcessResult:
    """Result of ``NovelProcessor.process_novel``."""
    outcome: AssemblyOutcome
    assembly: Optional[NovelAssembly] = None
    error: Optional[CrawlError] = None
    state: ProcessorState = ProcessorState.INIT

    @property
    def ok(self) -> bool:
        return self.outcome != AssemblyOutcome.FAILED_TO_START and self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error
