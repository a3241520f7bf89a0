"""
Command-line interface for serialscrape.

Usage:
    serialscrape scrape <url> [-o PATH] [--format F]   # Scrape a story and write it
    serialscrape toc <url>                             # List chapters without fetching them
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from config import Settings, load_settings
from crawler.errors import InputError, RenderError, ScraperError
from crawler.fetcher import Fetcher
from epub_writer import validate_epub
from formats import write_output
from ingestion import ScrapeOptions, ScrapeRunner, check_output_path, parse_chapter_range
from models import ChapterPolicy, EpubVersion, OutputFormat, Site
from normalizer import SlugGenerator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INPUT = 1
EXIT_SCRAPE = 2
EXIT_RENDER = 3
EXIT_INTERRUPTED = 130

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class CliParser(argparse.ArgumentParser):
    """ArgumentParser that reports usage errors with the input-error exit code."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_INPUT, f"{self.prog}: error: {message}\n")


class ProgressBar:
    """tqdm bar driven by (done, total) callbacks."""

    def __init__(self, disable: bool = False):
        self.disable = disable
        self.bar = None

    def __call__(self, done: int, total: int) -> None:
        if self.bar is None:
            self.bar = tqdm(total=total, unit="ch", desc="Chapters", disable=self.disable)
        self.bar.update(done - self.bar.n)

    def close(self) -> None:
        if self.bar is not None:
            self.bar.close()


def exit_code_for(error: BaseException) -> int:
    """Map an error class to the process exit code."""
    if isinstance(error, InputError):
        return EXIT_INPUT
    if isinstance(error, RenderError):
        return EXIT_RENDER
    # Network, extraction and policy errors
    return EXIT_SCRAPE


def format_error(error: BaseException, verbose: bool = False) -> str:
    """One terse line, or the full cause chain when verbose."""
    lines = [f"Error: {error}"]
    if verbose:
        cause = error.__cause__ or error.__context__
        while cause is not None:
            lines.append(f"  caused by: {type(cause).__name__}: {cause}")
            cause = cause.__cause__ or cause.__context__
    return '\n'.join(lines)


def setup_logging(level: str, quiet: bool = False, verbose: bool = False) -> None:
    """Configure root logging once; -q and -v override the configured level."""
    if verbose:
        level = "DEBUG"
    elif quiet:
        level = "WARNING"
    logging.basicConfig(level=getattr(logging, level), format=LOG_FORMAT, force=True)


def make_fetcher(settings: Settings) -> Fetcher:
    return Fetcher(
        user_agent=settings.user_agent,
        timeout=settings.timeout_secs,
        delay=settings.request_delay_secs,
        retry_policy=settings.retry_policy(),
    )


def _parse_site(value: Optional[str]) -> Optional[Site]:
    if value is None:
        return None
    try:
        return Site.from_name(value)
    except ValueError as e:
        raise InputError(str(e)) from e


def _parse_format(value: str) -> OutputFormat:
    try:
        return OutputFormat.from_name(value)
    except ValueError as e:
        raise InputError(str(e)) from e


def default_output_path(settings: Settings, title: str, fmt: OutputFormat) -> Path:
    directory = settings.output_dir or Path.cwd()
    return Path(directory) / f"{SlugGenerator.generate_slug(title)}.{fmt.extension}"


def cmd_scrape(args) -> int:
    """Scrape a story and write it in the selected format."""
    settings = load_settings(
        user_agent=args.user_agent,
        request_delay_secs=args.delay,
        timeout_secs=args.timeout,
        locked_chapters=args.locked_chapters,
        empty_chapters=args.empty_chapters,
    )
    setup_logging(settings.log_level, args.quiet, args.verbose)

    fmt = _parse_format(args.format)
    options = ScrapeOptions(
        site=_parse_site(args.site),
        chapter_range=parse_chapter_range(args.chapters) if args.chapters else None,
        resume_path=Path(args.resume) if args.resume else None,
        locked_policy=ChapterPolicy(settings.locked_chapters),
        empty_policy=ChapterPolicy(settings.empty_chapters),
        skip_failed=args.skip_failed,
        partial=args.partial,
    )
    output = check_output_path(Path(args.output)) if args.output else None
    if args.validate and fmt != OutputFormat.EPUB:
        logger.warning("--validate only applies to EPUB output; ignoring")

    progress = ProgressBar(disable=args.quiet)
    with make_fetcher(settings) as fetcher:
        try:
            work = ScrapeRunner(fetcher, options).run(args.url, on_progress=progress)
        finally:
            progress.close()

        output = output or default_output_path(settings, work.title, fmt)
        write_output(
            work,
            output,
            fmt,
            version=EpubVersion.EPUB2 if args.epub2 else EpubVersion.EPUB3,
            include_ncx=args.ncx,
            include_toc_page=settings.toc_page and not args.no_toc_page,
            fetcher=fetcher,
        )

    if args.validate and fmt == OutputFormat.EPUB:
        validate_epub(output)

    if not args.quiet:
        print(f"Wrote {len(work.chapters)} chapter(s) of '{work.title}' to {output}")
    return EXIT_OK


def cmd_toc(args) -> int:
    """Discover and print the chapter list without fetching chapters."""
    settings = load_settings(user_agent=args.user_agent)
    setup_logging(settings.log_level, args.quiet, args.verbose)

    with make_fetcher(settings) as fetcher:
        runner = ScrapeRunner(fetcher, ScrapeOptions(site=_parse_site(args.site)))
        spider, meta, manifest = runner.discover(args.url)

    print(f"{meta.title} by {meta.author} ({spider.name})")
    print(f"\n{'#':<5} {'Title':<50} URL")
    print("-" * 100)
    for entry in manifest:
        title = entry.title_hint or ""
        title = title[:47] + "..." if len(title) > 50 else title
        locked = " [locked]" if entry.locked else ""
        print(f"{entry.position:<5} {title:<50} {entry.url}{locked}")
    print(f"\nTotal: {len(manifest)} chapters")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = CliParser(
        prog="serialscrape",
        description="Scrape serialized web fiction (Royal Road, Scribble Hub) into EPUB and other formats",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--site", help="Force the site: royalroad (rr) or scribblehub (sh)")
    common.add_argument("--user-agent", help="User-Agent header for requests")
    common.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors; no progress bar")
    common.add_argument("-v", "--verbose", action="store_true", help="Debug logging and full error causes")

    # Scrape command
    scrape_parser = subparsers.add_parser("scrape", parents=[common], help="Scrape a story")
    scrape_parser.add_argument("url", help="Story index URL")
    scrape_parser.add_argument("-o", "--output", help="Output file (default: <title-slug>.<ext>)")
    scrape_parser.add_argument(
        "--format",
        default="epub",
        help="Output format: epub (default), json, html, markdown (md) or text (txt)",
    )
    scrape_parser.add_argument("--epub2", action="store_true", help="Write EPUB 2 instead of EPUB 3")
    scrape_parser.add_argument("--ncx", action="store_true", help="Include toc.ncx in EPUB 3")
    scrape_parser.add_argument("--no-toc-page", action="store_true", help="Omit the visible table of contents page")
    scrape_parser.add_argument("--chapters", help="Chapter range A-B (1-based, inclusive; A- or -B allowed)")
    scrape_parser.add_argument("--resume", help="JSON file to resume from; progress is saved there after each chapter")
    scrape_parser.add_argument(
        "--locked-chapters",
        choices=[p.value for p in ChapterPolicy],
        help="Locked (premium) chapters: skip (default), placeholder or fail",
    )
    scrape_parser.add_argument(
        "--empty-chapters",
        choices=[p.value for p in ChapterPolicy],
        help="Empty or unparseable chapters: skip (default), placeholder or fail",
    )
    scrape_parser.add_argument("--skip-failed", action="store_true", help="Skip chapters that fail to download")
    scrape_parser.add_argument("--partial", action="store_true", help="Write output even if no chapter was retrieved")
    scrape_parser.add_argument("--delay", type=float, help="Seconds between requests (default 2)")
    scrape_parser.add_argument("--timeout", type=float, help="Request timeout in seconds (default 30)")
    scrape_parser.add_argument("--validate", action="store_true", help="Run epubcheck on the written EPUB")
    scrape_parser.set_defaults(func=cmd_scrape)

    # TOC command
    toc_parser = subparsers.add_parser("toc", parents=[common], help="List a story's chapters")
    toc_parser.add_argument("url", help="Story index URL")
    toc_parser.set_defaults(func=cmd_toc)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_INPUT

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED
    except ScraperError as e:
        print(format_error(e, args.verbose), file=sys.stderr)
        return exit_code_for(e)


if __name__ == "__main__":
    sys.exit(main())
