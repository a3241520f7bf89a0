import json
import re
from typing import List, Set
from urllib.parse import urlparse

from crawler.errors import InvalidUrlError, MetadataParseError, TocParseError
from crawler.items import BookMeta, ChapterPage, ManifestEntry, TocPage
from crawler.spiders.base_spider import BaseSpider
from models import ChapterStatus
from normalizer import first_text, strip_html_tags

_CHAPTERS_ASSIGN_RE = re.compile(r'window\.chapters\s*=\s*')
_HIDDEN_CLASS_RE = re.compile(r'\.([A-Za-z0-9_-]+)\s*\{[^}]*display\s*:\s*none', re.IGNORECASE)


class RoyalRoadSpider(BaseSpider):
    """
    Spider for Royal Road.

    Site URL: https://www.royalroad.com/

    The fiction page renders a paginated chapter table, but only the
    ``window.chapters`` array embedded in a script holds the full list, so
    the TOC is read from that array alone and never paginates.
    """

    name = "royalroad"
    allowed_domains = ["royalroad.com"]
    base_url = "https://www.royalroad.com"
    title_suffixes = (" _ Royal Road", " - Royal Road", " | Royal Road")

    def ensure_story_url(self, url: str) -> str:
        """Require a fiction (index) URL, not a chapter URL."""
        url = super().ensure_story_url(url)
        path = urlparse(url).path
        if '/chapter/' in path:
            raise InvalidUrlError(
                url,
                "expected a fiction (index) URL, not a chapter URL, e.g. "
                "https://www.royalroad.com/fiction/21220/mother-of-learning",
            )
        if '/fiction/' not in path:
            raise InvalidUrlError(url, "expected a fiction URL containing /fiction/{id}/")
        return url

    def extract_book_meta(self, html: str) -> BookMeta:
        """Extract metadata: JSON-LD Book first, then DOM selectors."""
        sel = self.selector(html)
        meta = self.json_ld_book(sel)
        if meta:
            self.logger.info(f"Extracted fiction (JSON-LD): {meta.title} by {meta.author}")
            return meta

        title = self.text_of(sel, 'h1.font-white')
        author = self.text_of(sel, 'h4 a.font-white')
        description_html = sel.css('.description').get()
        if not title or not author:
            raise MetadataParseError(
                "Could not parse story page: missing title or author "
                "(selector or structure may have changed)"
            )

        self.logger.info(f"Extracted fiction (DOM): {title} by {author}")
        return BookMeta(
            title=title,
            author=author,
            description=first_text(strip_html_tags(description_html)) if description_html else None,
            cover_url=self.resolve_cover(self.meta_content(sel, 'og:image')),
        )

    def discover_toc_page(self, html: str, page_number: int) -> TocPage:
        """Parse the embedded ``window.chapters`` array; there is never a next page."""
        raw_chapters = self._window_chapters(html)

        indexed = []
        for position, raw in enumerate(raw_chapters):
            if not isinstance(raw, dict) or not raw.get('url'):
                self.logger.warning(f"Skipping malformed chapter entry #{position}: {raw!r}")
                continue
            order = raw.get('order')
            indexed.append((order if isinstance(order, int) else position, position, raw))
        indexed.sort(key=lambda item: (item[0], item[1]))

        entries: List[ManifestEntry] = []
        for order, _, raw in indexed:
            title = raw.get('title')
            entries.append(ManifestEntry(
                position=0,
                url=self.resolve_url(str(raw['url'])),
                title_hint=title.strip() if isinstance(title, str) and title.strip() else None,
                locked=not raw.get('isUnlocked', True),
                order=order,
            ))

        locked = sum(1 for e in entries if e.locked)
        self.logger.info(f"Found {len(entries)} chapters in window.chapters ({locked} locked)")
        return TocPage(entries=entries, next_url=None)

    def _window_chapters(self, html: str) -> list:
        match = _CHAPTERS_ASSIGN_RE.search(html or "")
        if not match:
            raise TocParseError("Could not parse chapter list: window.chapters not found")
        start = html.find('[', match.end())
        if start < 0:
            raise TocParseError("Could not parse chapter list: window.chapters array start not found")
        try:
            chapters, _ = json.JSONDecoder().raw_decode(html, start)
        except ValueError as e:
            raise TocParseError(f"Could not parse chapter list: {e}") from e
        if not isinstance(chapters, list):
            raise TocParseError("Could not parse chapter list: window.chapters is not an array")
        return chapters

    def extract_chapter(self, html: str, entry: ManifestEntry) -> ChapterPage:
        """Parse a chapter page; body is the direct <p> children of the chapter content div."""
        if not html or not html.strip():
            self.logger.warning(f"Chapter {entry.position}: empty response body at {entry.url}")
            return ChapterPage(
                title=entry.title_hint or f"Chapter {entry.position}",
                body="",
                status=ChapterStatus.UNPARSEABLE,
            )

        sel = self.selector(html)
        title = self.chapter_title(sel, 'h1.font-white.break-word', entry)
        body, status = self.body_from_container(
            sel,
            'div.chapter-inner.chapter-content',
            hidden_classes=self._hidden_classes(sel),
        )
        if status != ChapterStatus.OK:
            self.logger.warning(f"Chapter {entry.position}: {status.value} at {entry.url}")
        return ChapterPage(title=title, body=body, status=status)

    @staticmethod
    def _hidden_classes(sel) -> Set[str]:
        """Classes hidden by inline stylesheets (anti-piracy notices injected into chapters)."""
        hidden: Set[str] = set()
        for css in sel.css('style::text').getall():
            hidden.update(_HIDDEN_CLASS_RE.findall(css))
        return hidden
