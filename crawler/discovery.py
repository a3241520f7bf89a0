"""Table-of-contents discovery across paginated TOC pages."""
import logging
from dataclasses import replace
from typing import List, Optional, Set

from crawler.errors import EmptyChapterListError, FetchError, TocParseError
from crawler.fetcher import Fetcher
from crawler.items import ManifestEntry
from crawler.spiders.base_spider import BaseSpider
from normalizer import normalize_url

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 500


class TocDiscoverer:
    """
    Walk a story's TOC pages with one spider and build the chapter manifest.

    Entries are deduplicated by normalized URL (first occurrence wins), put in
    reading order by the spider and numbered 1..N.
    """

    def __init__(self, fetcher: Fetcher, spider: BaseSpider, max_pages: int = DEFAULT_MAX_PAGES):
        self.fetcher = fetcher
        self.spider = spider
        self.max_pages = max_pages

    def discover(self, first_page_html: Optional[str] = None) -> List[ManifestEntry]:
        """
        Build the manifest starting at the spider's story URL.

        Args:
            first_page_html: Story page HTML when the caller already fetched it

        Returns:
            Manifest entries with dense 1-based positions

        Raises:
            FetchError: If the first TOC page cannot be fetched
            TocParseError: If the first TOC page has no recognizable chapter list
            EmptyChapterListError: If the first TOC page lists no chapters
        """
        start_url = self.spider.source_url
        html = first_page_html if first_page_html is not None else self.fetcher.fetch_text(start_url)
        first = self.spider.discover_toc_page(html, 1)
        if not first.entries:
            raise EmptyChapterListError(start_url)

        merged: List[ManifestEntry] = []
        seen: Set[str] = set()
        self._merge(first.entries, merged, seen)

        visited = {normalize_url(start_url)}
        next_url = first.next_url
        page_number = 1
        while next_url:
            key = normalize_url(next_url)
            if key in visited:
                logger.warning(f"TOC page {next_url} already visited; stopping pagination")
                break
            if page_number >= self.max_pages:
                logger.warning(f"Reached TOC page limit ({self.max_pages}); stopping pagination")
                break
            visited.add(key)
            page_number += 1

            try:
                page = self.spider.discover_toc_page(self.fetcher.fetch_text(next_url), page_number)
            except (FetchError, TocParseError) as e:
                logger.warning(f"TOC page {page_number} failed ({e}); keeping {len(merged)} chapters found so far")
                break

            added = self._merge(page.entries, merged, seen)
            logger.debug(f"TOC page {page_number}: {added} new of {len(page.entries)} entries")
            next_url = page.next_url

        ordered = self.spider.order_manifest(merged)
        manifest = [replace(entry, position=i) for i, entry in enumerate(ordered, start=1)]
        logger.info(f"Discovered {len(manifest)} chapters over {page_number} TOC page(s)")
        return manifest

    @staticmethod
    def _merge(entries: List[ManifestEntry], merged: List[ManifestEntry], seen: Set[str]) -> int:
        """Append entries whose normalized URL is new; return how many were added."""
        added = 0
        for entry in entries:
            key = normalize_url(entry.url)
            if key in seen:
                continue
            seen.add(key)
            merged.append(entry)
            added += 1
        return added
