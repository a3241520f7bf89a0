"""Site selection and scrape run orchestration."""
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Type
from urllib.parse import urlparse

from pydantic import ValidationError as PydanticValidationError

from crawler.discovery import TocDiscoverer
from crawler.errors import InputError, InvalidUrlError, OutputPathError, UnsupportedSiteError
from crawler.extraction import ChapterExtractor
from crawler.fetcher import Fetcher
from crawler.items import BookMeta, ChapterRecord, ManifestEntry
from crawler.pipelines import ResumeReconciler, WorkAssembler
from crawler.spiders.base_spider import BaseSpider
from crawler.spiders.royalroad import RoyalRoadSpider
from crawler.spiders.scribblehub import ScribbleHubSpider
from models import ChapterPolicy, Site
from schemas import Work

logger = logging.getLogger(__name__)


class SpiderRegistry:
    """
    Registry mapping domains to spiders.

    Used to select the appropriate spider for a given URL. Subdomains of a
    registered domain map to the same spider.
    """

    DOMAIN_SPIDER_MAP: Dict[str, Site] = {
        'royalroad.com': Site.ROYALROAD,
        'scribblehub.com': Site.SCRIBBLEHUB,
    }

    SPIDERS: Dict[Site, Type[BaseSpider]] = {
        Site.ROYALROAD: RoyalRoadSpider,
        Site.SCRIBBLEHUB: ScribbleHubSpider,
    }

    @classmethod
    def get_site_for_url(cls, url: str) -> Optional[Site]:
        """
        Determine which site a URL belongs to.

        Args:
            url: The story URL

        Returns:
            Site or None if no spider is registered for the host
        """
        host = (urlparse(url).hostname or '').lower()
        for domain, site in cls.DOMAIN_SPIDER_MAP.items():
            if host == domain or host.endswith('.' + domain):
                return site
        logger.debug(f"No spider registered for domain: {host}")
        return None

    @classmethod
    def resolve(cls, url: str, override: Optional[Site] = None) -> BaseSpider:
        """
        Build the spider for ``url``.

        Args:
            url: The story URL
            override: Force a site regardless of the host

        Raises:
            InvalidUrlError: If the URL is not an absolute http(s) URL or not a story URL
            UnsupportedSiteError: If no spider handles the host and no override is given
        """
        parsed = urlparse((url or '').strip())
        if parsed.scheme not in ('http', 'https') or not parsed.hostname:
            raise InvalidUrlError(url, "expected an absolute http(s) URL")

        site = override or cls.get_site_for_url(url)
        if site is None:
            raise UnsupportedSiteError(parsed.hostname)

        return cls.SPIDERS[site](url.strip(), check_host=override is None)


@dataclass(frozen=True)
class ChapterRange:
    """Inclusive 1-based range of manifest positions; None means open-ended."""
    start: Optional[int] = None
    end: Optional[int] = None

    def __contains__(self, position: int) -> bool:
        if self.start is not None and position < self.start:
            return False
        if self.end is not None and position > self.end:
            return False
        return True

    def __str__(self) -> str:
        return f"{self.start or ''}-{self.end or ''}"


def parse_chapter_range(value: str) -> ChapterRange:
    """
    Parse ``A-B``, ``A-``, ``-B`` or ``A`` into a ChapterRange.

    Raises:
        InputError: If the value is malformed or A > B
    """
    match = re.fullmatch(r'\s*(\d*)\s*(-?)\s*(\d*)\s*', value or '')
    if not match or not (match.group(1) or match.group(3)):
        raise InputError(f"Invalid chapter range: '{value}'. Use A-B, A-, -B or A (1-based).")

    start = int(match.group(1)) if match.group(1) else None
    end = int(match.group(3)) if match.group(3) else None
    if not match.group(2):
        end = start
    if (start is not None and start < 1) or (end is not None and end < 1):
        raise InputError(f"Invalid chapter range: '{value}'. Chapter numbers start at 1.")
    if start is not None and end is not None and start > end:
        raise InputError(f"Invalid chapter range: '{value}'. Start is after end.")
    return ChapterRange(start, end)


def load_resume(path: Path) -> Optional[Work]:
    """
    Load a previously saved Work.

    Returns:
        The Work, or None when the file does not exist (start fresh)

    Raises:
        InputError: If the file cannot be read or is not a valid Work
    """
    path = Path(path)
    if not path.exists():
        logger.info(f"Resume file {path} not found; starting fresh")
        return None
    try:
        return Work.from_json(path.read_text(encoding='utf-8'))
    except OSError as e:
        raise InputError(f"Cannot read resume file {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise InputError(f"Resume file {path} is not UTF-8 text: {e}") from e
    except PydanticValidationError as e:
        raise InputError(f"Resume file {path} is not a valid saved work: {e}") from e


def check_output_path(path: Path) -> Path:
    """
    Fail fast on an output path that can never be written.

    Raises:
        OutputPathError: If ``path`` is a directory or its parent directory is missing
    """
    path = Path(path)
    if path.is_dir():
        raise OutputPathError(f"Output path {path} is a directory; give a file name.")
    if not path.parent.is_dir():
        raise OutputPathError(f"Output directory {path.parent} does not exist.")
    return path


def save_work_atomic(work: Work, path: Path) -> None:
    """
    Write ``work`` as canonical JSON, replacing ``path`` atomically.

    Raises:
        OutputPathError: If the file cannot be written
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix='.tmp', dir=path.parent)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(work.to_json())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as e:
        raise OutputPathError(f"Cannot write {path}: {e}") from e


@dataclass
class ScrapeOptions:
    """Options for one scrape run."""
    site: Optional[Site] = None
    chapter_range: Optional[ChapterRange] = None
    resume_path: Optional[Path] = None
    locked_policy: ChapterPolicy = ChapterPolicy.SKIP
    empty_policy: ChapterPolicy = ChapterPolicy.SKIP
    skip_failed: bool = False
    partial: bool = False
    renumber: bool = True


class ScrapeRunner:
    """
    Run a scrape end to end and return the canonical Work.

    Steps: select spider, fetch story page, read metadata, discover the TOC,
    filter by chapter range, reconcile with the resume file, extract the
    remaining chapters (saving a checkpoint after each) and assemble.
    """

    def __init__(self, fetcher: Fetcher, options: Optional[ScrapeOptions] = None):
        self.fetcher = fetcher
        self.options = options or ScrapeOptions()

    def discover(self, url: str) -> Tuple[BaseSpider, BookMeta, List[ManifestEntry]]:
        """Fetch the story page and build metadata plus the full manifest."""
        spider = SpiderRegistry.resolve(url, self.options.site)
        logger.info(f"Using spider '{spider.name}' for {spider.source_url}")

        html = self.fetcher.fetch_text(spider.source_url)
        meta = spider.extract_book_meta(html)
        manifest = TocDiscoverer(self.fetcher, spider).discover(first_page_html=html)
        return spider, meta, manifest

    def run(self, url: str, on_progress: Optional[Callable[[int, int], None]] = None) -> Work:
        """
        Scrape the story at ``url``.

        Args:
            url: Story index URL
            on_progress: Called with (done, total) after each chapter entry

        Returns:
            The assembled Work

        Raises:
            ScraperError: Any classified failure (input, network, extraction, policy)
        """
        options = self.options
        prior = load_resume(options.resume_path) if options.resume_path else None

        spider, meta, manifest = self.discover(url)

        range_empty = False
        if options.chapter_range is not None:
            manifest = [e for e in manifest if e.position in options.chapter_range]
            logger.info(f"Chapter range {options.chapter_range}: {len(manifest)} chapter(s) selected")
            range_empty = not manifest

        carried: List[ChapterRecord] = []
        remaining = manifest
        if prior is not None:
            carried, remaining = ResumeReconciler(prior, spider.source_url).reconcile(manifest)

        assembler = WorkAssembler(renumber=options.renumber, allow_empty=options.partial or range_empty)
        checkpoint = None
        if options.resume_path:
            checkpoint = self._checkpointer(assembler, meta, carried, spider.source_url, options.resume_path)

        extractor = ChapterExtractor(
            self.fetcher,
            spider,
            locked_policy=options.locked_policy,
            empty_policy=options.empty_policy,
            skip_failed=options.skip_failed,
        )
        fetched = extractor.extract(remaining, on_progress=on_progress, on_chapter=checkpoint)

        return assembler.assemble(meta, carried + fetched, source_url=spider.source_url)

    @staticmethod
    def _checkpointer(assembler: WorkAssembler, meta: BookMeta, carried: List[ChapterRecord], source_url: str, path: Path):
        """Return a callback that saves the partial Work after each chapter."""
        partial = WorkAssembler(renumber=assembler.renumber, allow_empty=True)

        def save(fetched: List[ChapterRecord]) -> None:
            work = partial.assemble(meta, carried + fetched, source_url=source_url)
            save_work_atomic(work, path)
            logger.debug(f"Checkpoint: {len(work.chapters)} chapter(s) saved to {path}")

        return save
