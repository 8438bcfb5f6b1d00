"""
Web Novel Crawler Package
Crawls a web novel's metadata, paginated chapter list and chapter bodies
with bounded concurrency over a pooled headless browser.

CLI Usage:
    python -m novelcrawl <toc-url> [options]

    Options:
        --concurrency    Chapters fetched at once (default: 5)
        --pool-capacity  Browser pages in the session pool (default: 5)
        --timeout        Per-fetch timeout in seconds (default: 30)
        --max-retries    Retries per transient failure (default: 3)
        --sites-file     JSON file adding/overriding site configs
        --output-json    Export to JSON file
        --output-docx    Export to DOCX file
"""

from .errors import (
    CrawlError,
    TransientNetworkError,
    RateLimitedError,
    TerminalFetchError,
    PoolExhaustedTimeout,
    ClosedPoolError,
    PoolStartupError,
    UnsupportedSiteError,
    SiteConfigError,
)
from .models import (
    NovelData,
    NovelStatus,
    ChapterResult,
    FetchStatus,
    NovelAssembly,
    AssemblyOutcome,
    ProcessorState,
    ProcessResult,
    ProgressEvent,
)
from .run_config import CrawlerRunConfig
from .site_config import SiteSelectorConfig, SelectorSet, PaginationStyle, load_site_configs
from .session_pool import SessionPool, SessionHandle
from .fetcher import DocumentFetcher
from .strategies import SiteStrategy, StrategyFactory
from .pagination import PaginationCrawler, PaginationResult, CrawlState
from .fetch_pipeline import ChapterFetchPipeline
from .processor import NovelProcessor
from .storage import JsonNovelStore, export_json

__all__ = [
    # Errors
    'CrawlError',
    'TransientNetworkError',
    'RateLimitedError',
    'TerminalFetchError',
    'PoolExhaustedTimeout',
    'ClosedPoolError',
    'PoolStartupError',
    'UnsupportedSiteError',
    'SiteConfigError',
    # Data model
    'NovelData',
    'NovelStatus',
    'ChapterResult',
    'FetchStatus',
    'NovelAssembly',
    'AssemblyOutcome',
    'ProcessorState',
    'ProcessResult',
    'ProgressEvent',
    # Configuration
    'CrawlerRunConfig',
    'SiteSelectorConfig',
    'SelectorSet',
    'PaginationStyle',
    'load_site_configs',
    # Engine
    'SessionPool',
    'SessionHandle',
    'DocumentFetcher',
    'SiteStrategy',
    'StrategyFactory',
    'PaginationCrawler',
    'PaginationResult',
    'CrawlState',
    'ChapterFetchPipeline',
    'NovelProcessor',
    # Persistence
    'JsonNovelStore',
    'export_json',
]

__version__ = '1.0.0'
