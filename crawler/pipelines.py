"""Resume reconciliation and canonical Work assembly."""
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from crawler.errors import NoChaptersRetrievedError, ResumeMismatchError
from crawler.items import BookMeta, ChapterRecord, ManifestEntry
from normalizer import normalize_url
from schemas import Chapter, Work

logger = logging.getLogger(__name__)


class ResumeReconciler:
    """
    Match a fresh manifest against a previously saved Work.

    A prior chapter satisfies a manifest entry when it has ``ok`` status and
    either its source URL matches the entry URL or, for chapters saved
    without a URL, its index equals the entry position. The prior Work is
    never modified.
    """

    def __init__(self, prior: Work, story_url: Optional[str] = None):
        """
        Args:
            prior: Work loaded from the resume file
            story_url: URL of the story being scraped now

        Raises:
            ResumeMismatchError: If the prior Work was saved for another story
        """
        if story_url and prior.source_url and normalize_url(prior.source_url) != normalize_url(story_url):
            raise ResumeMismatchError(
                f"Resume file is for {prior.source_url}, not {story_url}. "
                f"Use a different output path or remove --resume."
            )
        self.prior = prior

        self._by_url: Dict[str, Chapter] = {}
        self._by_index: Dict[int, Chapter] = {}
        for chapter in prior.chapters:
            if not chapter.is_ok:
                continue
            if chapter.source_url:
                self._by_url.setdefault(normalize_url(chapter.source_url), chapter)
            else:
                self._by_index.setdefault(chapter.index, chapter)

    def reconcile(self, manifest: Iterable[ManifestEntry]) -> Tuple[List[ChapterRecord], List[ManifestEntry]]:
        """
        Split the manifest into carried chapters and entries still to fetch.

        Returns:
            (carried records in manifest order, remaining manifest entries)
        """
        carried: List[ChapterRecord] = []
        remaining: List[ManifestEntry] = []
        used = set()

        for entry in manifest:
            chapter = self._match(entry)
            if chapter is not None and id(chapter) not in used:
                used.add(id(chapter))
                carried.append(ChapterRecord(entry.position, chapter))
            else:
                remaining.append(entry)

        logger.info(f"Resume: {len(carried)} chapter(s) already saved, {len(remaining)} to fetch")
        return carried, remaining

    def _match(self, entry: ManifestEntry) -> Optional[Chapter]:
        chapter = self._by_url.get(normalize_url(entry.url))
        if chapter is not None:
            return chapter
        return self._by_index.get(entry.position)


class WorkAssembler:
    """
    Merge book metadata and chapter records into one canonical Work.

    Records are ordered by manifest position. With ``renumber`` (the default)
    chapters are numbered 1..N with no gaps left by skipped chapters;
    otherwise each chapter keeps its manifest position as its index.
    """

    def __init__(self, renumber: bool = True, allow_empty: bool = False):
        self.renumber = renumber
        self.allow_empty = allow_empty

    def assemble(
        self,
        meta: BookMeta,
        records: Iterable[ChapterRecord],
        source_url: Optional[str] = None,
    ) -> Work:
        """
        Build the Work.

        Raises:
            NoChaptersRetrievedError: If no chapters remain and empty output
                was not allowed
        """
        ordered = sorted(records, key=lambda r: r.position)
        if not ordered and not self.allow_empty:
            raise NoChaptersRetrievedError()

        chapters = []
        for number, record in enumerate(ordered, start=1):
            index = number if self.renumber else record.position
            chapter = record.chapter
            if chapter.index != index:
                chapter = chapter.model_copy(update={"index": index})
            chapters.append(chapter)

        work = Work(
            title=meta.title,
            author=meta.author,
            description=meta.description,
            cover_url=meta.cover_url,
            chapters=tuple(chapters),
            source_url=source_url,
        )
        logger.info(f"Assembled {work.title}: {len(chapters)} chapter(s)")
        return work
