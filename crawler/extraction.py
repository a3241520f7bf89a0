"""Chapter extraction: fetch each manifest entry and apply the chapter policies."""
import logging
from typing import Callable, Iterable, List, Optional

from crawler.errors import EmptyChapterError, FetchError, LockedChapterError
from crawler.fetcher import Fetcher
from crawler.items import ChapterRecord, ManifestEntry
from crawler.spiders.base_spider import BaseSpider
from models import ChapterPolicy, ChapterStatus
from schemas import Chapter

logger = logging.getLogger(__name__)

PLACEHOLDERS = {
    ChapterStatus.LOCKED: (
        "locked",
        "<p>This chapter is locked (premium) and could not be retrieved.</p>",
    ),
    ChapterStatus.EMPTY: (
        "no content",
        "<p>This chapter returned no content.</p>",
    ),
    ChapterStatus.UNPARSEABLE: (
        "unable to parse",
        "<p>This chapter could not be parsed (missing content container).</p>",
    ),
}

ProgressCallback = Callable[[int, int], None]
ChapterCallback = Callable[[List[ChapterRecord]], None]


class ChapterExtractor:
    """
    Fetch and extract chapters one at a time, in manifest order.

    Locked entries are resolved by the locked policy without a request. Empty
    and unparseable pages are resolved by the empty policy. A fetch failure
    aborts the run unless ``skip_failed`` is set.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        spider: BaseSpider,
        locked_policy: ChapterPolicy = ChapterPolicy.SKIP,
        empty_policy: ChapterPolicy = ChapterPolicy.SKIP,
        skip_failed: bool = False,
    ):
        self.fetcher = fetcher
        self.spider = spider
        self.locked_policy = locked_policy
        self.empty_policy = empty_policy
        self.skip_failed = skip_failed

    def extract(
        self,
        entries: Iterable[ManifestEntry],
        on_progress: Optional[ProgressCallback] = None,
        on_chapter: Optional[ChapterCallback] = None,
    ) -> List[ChapterRecord]:
        """
        Extract every entry.

        Args:
            entries: Manifest entries still to retrieve
            on_progress: Called with (done, total) after each entry
            on_chapter: Called with all records so far whenever one is added

        Returns:
            Records for the chapters kept, in manifest order

        Raises:
            FetchError: If a chapter cannot be fetched and ``skip_failed`` is off
            PolicyError: If a policy of ``fail`` is triggered
        """
        entries = list(entries)
        total = len(entries)
        records: List[ChapterRecord] = []

        for done, entry in enumerate(entries, start=1):
            record = self.extract_one(entry)
            if record is not None:
                records.append(record)
                if on_chapter:
                    on_chapter(list(records))
            if on_progress:
                on_progress(done, total)

        skipped = total - len(records)
        if skipped:
            logger.warning(f"Skipped {skipped} of {total} chapter(s)")
        return records

    def extract_one(self, entry: ManifestEntry) -> Optional[ChapterRecord]:
        """Extract one entry; None means the chapter is left out."""
        if entry.locked:
            return self._apply_policy(entry, ChapterStatus.LOCKED, entry.title_hint or f"Chapter {entry.position}")

        try:
            html = self.fetcher.fetch_text(entry.url)
        except FetchError as e:
            if not self.skip_failed:
                raise
            logger.warning(f"Skipping chapter {entry.position} ({entry.url}): {e}")
            return None

        page = self.spider.extract_chapter(html, entry)
        if page.status == ChapterStatus.OK:
            logger.debug(f"Chapter {entry.position}: {page.title}")
            return ChapterRecord(entry.position, Chapter(
                title=page.title,
                index=entry.position,
                body=page.body,
                source_url=entry.url,
            ))
        return self._apply_policy(entry, page.status, page.title)

    def _apply_policy(self, entry: ManifestEntry, status: ChapterStatus, title: str) -> Optional[ChapterRecord]:
        policy = self.locked_policy if status == ChapterStatus.LOCKED else self.empty_policy

        if policy == ChapterPolicy.FAIL:
            if status == ChapterStatus.LOCKED:
                raise LockedChapterError(entry.position, entry.url)
            reason = "has no content" if status == ChapterStatus.EMPTY else "could not be parsed (missing content container)"
            raise EmptyChapterError(entry.position, entry.url, reason)

        if policy == ChapterPolicy.SKIP:
            logger.warning(f"Skipping {status.value} chapter {entry.position}: {title} ({entry.url})")
            return None

        suffix, body = PLACEHOLDERS[status]
        logger.warning(f"Placeholder for {status.value} chapter {entry.position}: {title}")
        return ChapterRecord(entry.position, Chapter(
            title=f"{title} ({suffix})",
            index=entry.position,
            body=body,
            status=status,
            source_url=entry.url,
        ))
