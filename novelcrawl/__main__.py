#!/usr/bin/env python3
"""
Command-line entry point
========================
Crawl one novel from its table-of-contents URL, save it to the novel store
and optionally export JSON / DOCX.  Stored novels can be listed, re-exported
without crawling, removed or cleared.

All configuration flows through ``CrawlerRunConfig``: defaults, then
``NOVELCRAWL_*`` environment variables (a ``.env`` file is honoured), then
command-line flags.

Run with: python -m novelcrawl <toc-url>
"""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from .errors import CrawlError
from .models import AssemblyOutcome, NovelAssembly, ProcessResult, ProgressEvent
from .processor import NovelProcessor
from .run_config import CrawlerRunConfig
from .site_config import load_site_configs
from .storage import JsonNovelStore, export_json
from .strategies import StrategyFactory
from .utils import is_valid_url

# Load .env before any config is read
env_path = Path(__file__).resolve().parent.parent / '.env'
if env_path.exists():
    load_dotenv(env_path)
else:
    load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)s | %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Progress + summary
# ---------------------------------------------------------------------------

def progress_cb(event: ProgressEvent) -> None:
    if event.kind == "site_resolved":
        print(f"[Site] {event.message}")
    elif event.kind == "listing_page":
        print(f"[Listing {event.current}/{event.total}] {event.url[:70]}")
    elif event.kind == "listing_page_failed":
        print(f"[Listing {event.current}] FAILED: {event.message[:70]}")
    elif event.kind == "chapter":
        print(f"[Chapter {event.current}/{event.total}] {event.message[:70]}")
    elif event.kind == "chapter_failed":
        print(f"[Chapter {event.current}/{event.total}] FAILED: {event.url[:70]}")


def print_summary(result: ProcessResult) -> None:
    """Print crawl summary."""
    print("\n" + "=" * 65)
    if result.outcome == AssemblyOutcome.FAILED_TO_START:
        print("CRAWL FAILED TO START")
        print("=" * 65)
        print(f"  Error:               {result.error}")
        print("=" * 65)
        return

    assembly = result.assembly
    novel = assembly.novel
    failed = assembly.failed_chapters
    if result.outcome == AssemblyOutcome.SUCCEEDED:
        print("CRAWL COMPLETE")
    else:
        print("CRAWL PARTIALLY COMPLETE")
    print("=" * 65)
    print(f"  Title:               {novel.title or '(unknown)'}")
    if novel.author:
        print(f"  Author:              {novel.author}")
    print(f"  Status:              {novel.status.value}")
    print(f"  Chapters listed:     {novel.total_chapters}")
    if novel.reported_chapter_count is not None:
        print(f"  Chapters reported:   {novel.reported_chapter_count}")
    print(f"  Chapters fetched:    {assembly.fetched_count}")
    if failed:
        print(f"  Chapters failed:     {len(failed)} of {len(assembly.chapters)}")
        for chapter in failed:
            print(f"    #{chapter.number:<5} {chapter.url[:60]}  ({chapter.error[:40]})")
    if assembly.failed_listing_pages:
        pages = ", ".join(str(p) for p in assembly.failed_listing_pages)
        print(f"  Listing pages failed: {pages}")
    if result.error is not None:
        print(f"  Aborted:             {result.error}")
    print(f"  Outcome:             {result.outcome.value}")
    print("=" * 65)


# ---------------------------------------------------------------------------
# Sub-commands
# ---------------------------------------------------------------------------

def _list_novels(cfg: CrawlerRunConfig) -> int:
    rows = JsonNovelStore(cfg.store_path).list_novels()
    if not rows:
        print(f"No novels in {cfg.store_path}")
        return 0
    for row in rows:
        print(
            f"  {row['title'] or '(untitled)':<40} "
            f"{row['fetched']:>5}/{row['chapters']:<5} {row['outcome']:<16} {row['toc_url']}"
        )
    return 0


def _list_sites(cfg: CrawlerRunConfig) -> int:
    factory = StrategyFactory(load_site_configs(cfg.sites_file))
    dedicated = set(factory.list_strategies())
    for site in factory.list_sites():
        mode = "rendered" if site.requires_rendering else "static"
        variant = "custom" if site.key.lower() in dedicated else "generic"
        print(f"  {site.key:<20} {site.name:<25} {mode:<9} {variant:<8} {', '.join(site.hosts)}")
    return 0


def _remove_novel(url: str, cfg: CrawlerRunConfig) -> int:
    if not JsonNovelStore(cfg.store_path).remove(url):
        print(f"Not in {cfg.store_path}: {url}")
        return 1
    print(f"Removed {url} from {cfg.store_path}")
    return 0


def _clear_store(cfg: CrawlerRunConfig) -> int:
    count = JsonNovelStore(cfg.store_path).clear()
    print(f"Removed {count} novel(s) from {cfg.store_path}")
    return 0


def _export(assembly: NovelAssembly, cfg: CrawlerRunConfig) -> None:
    exported = []
    if cfg.output_json:
        exported.append(export_json(assembly, cfg.output_json))
    if cfg.output_docx:
        from .word_exporter import export_docx
        exported.append(export_docx(assembly, cfg.output_docx))
    if exported:
        print("\n" + "-" * 40)
        for path in exported:
            print(f"  Exported: {path}")
        print("-" * 40)


def _export_only(url: str, cfg: CrawlerRunConfig) -> int:
    """Re-export a stored novel without touching the network."""
    assembly = JsonNovelStore(cfg.store_path).get(url)
    if assembly is None:
        print(f"Not in {cfg.store_path}: {url}")
        return 1
    _export(assembly, cfg)
    return 0


def _crawl(url: str, cfg: CrawlerRunConfig) -> int:
    store = JsonNovelStore(cfg.store_path)
    previous = store.get(url) if cfg.resume else None

    processor = NovelProcessor(cfg, progress_callback=progress_cb)
    try:
        result = processor.run(url, resume_from=previous)
    except KeyboardInterrupt:
        # Keep what was fetched so the next run resumes from it
        partial = processor.current_assembly
        if partial is not None and partial.chapters:
            store.upsert(partial)
            print(
                f"\nSaved {partial.fetched_count}/{len(partial.chapters)} chapter(s) "
                f"to {cfg.store_path}; run again to resume."
            )
        raise
    print_summary(result)

    if result.assembly is None:
        return 1

    store.upsert(result.assembly)
    _export(result.assembly, cfg)
    return 0


# ---------------------------------------------------------------------------
# Flag-driven entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='novelcrawl',
        description='Crawl a web novel: metadata, chapter list and every chapter',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m novelcrawl https://novelfull.com/some-novel.html
  python -m novelcrawl https://www.lightnovelworld.com/novel/some-novel --concurrency 3 --output-docx out.docx
  python -m novelcrawl --export-only https://novelfull.com/some-novel.html --output-docx out.docx
  python -m novelcrawl --remove https://novelfull.com/some-novel.html
  python -m novelcrawl --list
  python -m novelcrawl --list-sites --sites-file sites.json
        """
    )

    parser.add_argument('url', nargs='?', help='Novel table-of-contents URL')
    parser.add_argument('--concurrency', type=int, help='Chapters fetched at once (default: 5)')
    parser.add_argument('--pool-capacity', type=int, help='Browser pages in the session pool (default: 5)')
    parser.add_argument('--timeout', type=int, help='Timeout per fetch in seconds (default: 30)')
    parser.add_argument('--max-retries', type=int, help='Retries per transient failure (default: 3)')
    parser.add_argument('--headed', action='store_true', help='Show the browser window')
    parser.add_argument('--sites-file', type=str, metavar='PATH', help='JSON file adding/overriding site configs')
    parser.add_argument('--store', type=str, metavar='PATH', help='Novel store file (default: novels.json)')
    parser.add_argument('--no-resume', action='store_true', help='Re-fetch chapters already in the store')
    parser.add_argument('--output-json', type=str, help='JSON output file path')
    parser.add_argument('--output-docx', type=str, help='DOCX output file path')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    parser.add_argument('--list', action='store_true', help='List novels in the store and exit')
    parser.add_argument('--list-sites', action='store_true', help='List supported sites and exit')

    store_ops = parser.add_mutually_exclusive_group()
    store_ops.add_argument('--export-only', action='store_true',
                           help='Export the stored copy of URL without crawling (needs --output-json/--output-docx)')
    store_ops.add_argument('--remove', action='store_true', help='Remove URL from the store and exit')
    store_ops.add_argument('--clear', action='store_true', help='Remove every novel from the store and exit')
    return parser


def _cli_url(parser: argparse.ArgumentParser, raw: str) -> str:
    url = raw if raw.startswith(('http://', 'https://')) else 'https://' + raw
    if not is_valid_url(url):
        parser.error(f"not a valid novel URL: {raw}")
    return url


def run_cli_with_args(argv=None) -> int:
    """Parse argv, build CrawlerRunConfig, run. Returns the exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        cfg = CrawlerRunConfig.from_cli_args(args, base=CrawlerRunConfig.from_env()).validate()
    except ValueError as e:
        parser.error(str(e))

    try:
        if args.list:
            return _list_novels(cfg)
        if args.list_sites:
            return _list_sites(cfg)
        if args.clear:
            return _clear_store(cfg)

        if not args.url:
            parser.error("a novel URL is required (or use --list / --list-sites / --clear)")
        url = _cli_url(parser, args.url)
        if args.remove:
            return _remove_novel(url, cfg)
        if args.export_only:
            if not (cfg.output_json or cfg.output_docx):
                parser.error("--export-only needs --output-json and/or --output-docx")
            return _export_only(url, cfg)
        return _crawl(url, cfg)
    except CrawlError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


if __name__ == '__main__':
    sys.exit(run_cli_with_args())
