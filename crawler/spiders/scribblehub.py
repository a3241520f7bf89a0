from typing import List, Optional
from urllib.parse import parse_qs, urlparse

from crawler.errors import InvalidUrlError, MetadataParseError, TocParseError
from crawler.items import BookMeta, ChapterPage, ManifestEntry, TocPage
from crawler.spiders.base_spider import BaseSpider
from models import ChapterStatus
from normalizer import first_text, strip_html_tags


class ScribbleHubSpider(BaseSpider):
    """
    Spider for Scribble Hub.

    Site URL: https://www.scribblehub.com/

    The series page lists chapters newest first, split over pages reached
    with ``?toc=N``. Every ``li.toc_w`` carries an ``order`` attribute that
    gives the reading order across pages.
    """

    name = "scribblehub"
    allowed_domains = ["scribblehub.com"]
    base_url = "https://www.scribblehub.com"
    title_suffixes = (" | Scribble Hub", " - Scribble Hub")

    def ensure_story_url(self, url: str) -> str:
        """Require a series (index) URL, not a chapter URL."""
        url = super().ensure_story_url(url)
        path = urlparse(url).path
        if '/read/' in path and '/chapter/' in path:
            raise InvalidUrlError(
                url,
                "expected a series (index) URL, not a chapter URL, e.g. "
                "https://www.scribblehub.com/series/862913/hp-the-arcane-thief-litrpg/",
            )
        if '/series/' not in path:
            raise InvalidUrlError(url, "expected a series URL containing /series/{id}/{slug}/")
        return url

    def extract_book_meta(self, html: str) -> BookMeta:
        """Extract metadata: JSON-LD Book first, then DOM selectors."""
        sel = self.selector(html)
        meta = self.json_ld_book(sel)
        if meta:
            self.logger.info(f"Extracted series (JSON-LD): {meta.title} by {meta.author}")
            return meta

        title = first_text(
            self.text_of(sel, 'div.fic_title'),
            self.meta_content(sel, 'og:title'),
        )
        author = first_text(
            self.text_of(sel, 'span.auth_name_fic'),
            self.text_of(sel, 'div[property="author"] a'),
        )
        if not title or not author:
            raise MetadataParseError(
                "Could not parse story page: missing title or author "
                "(selector or structure may have changed)"
            )

        description_html = sel.css('div.wi_fic_desc').get()
        self.logger.info(f"Extracted series (DOM): {title} by {author}")
        return BookMeta(
            title=title,
            author=author,
            description=first_text(strip_html_tags(description_html)) if description_html else None,
            cover_url=self.resolve_cover(self.meta_content(sel, 'og:image')),
        )

    def discover_toc_page(self, html: str, page_number: int) -> TocPage:
        """Parse one ``?toc=N`` page of the series chapter list."""
        sel = self.selector(html)
        toc = sel.css('ol.toc_ol')
        if not toc:
            raise TocParseError(f"Could not parse chapter list: ol.toc_ol not found on TOC page {page_number}")

        entries: List[ManifestEntry] = []
        for li in toc[0].css('li.toc_w'):
            href = li.css('a.toc_a::attr(href)').get()
            if not href or not href.strip():
                continue
            title = self.text_of(li, 'a.toc_a')
            order = li.attrib.get('order', '').strip()
            entries.append(ManifestEntry(
                position=0,
                url=self.resolve_url(href),
                title_hint=title,
                order=int(order) if order.isdigit() else None,
            ))

        self.logger.info(f"TOC page {page_number}: {len(entries)} chapters")
        return TocPage(entries=entries, next_url=self._next_page_url(sel, page_number))

    def _next_page_url(self, sel, page_number: int) -> Optional[str]:
        """
        Find the next TOC page link.

        A ``.next`` link with an empty, ``#`` or ``javascript:`` href is dead.
        When the ``.next`` link is dead or missing, any pagination link pointing
        at ``toc=page_number+1`` is used instead.
        """
        href = sel.css('#pagination-mesh-toc a.page-link.next::attr(href)').get()
        if self._is_live_href(href):
            return self.resolve_url(href, self.source_url)

        wanted = str(page_number + 1)
        for href in sel.css('#pagination-mesh-toc a::attr(href)').getall():
            if not self._is_live_href(href):
                continue
            if parse_qs(urlparse(href.strip()).query).get('toc', [None])[0] == wanted:
                return self.resolve_url(href, self.source_url)
        return None

    @staticmethod
    def _is_live_href(href: Optional[str]) -> bool:
        if not href or not href.strip():
            return False
        href = href.strip()
        return not (href.startswith('#') or href.lower().startswith('javascript:'))

    def order_manifest(self, entries: List[ManifestEntry]) -> List[ManifestEntry]:
        """Sort by the site ``order`` attribute when every entry has one."""
        if entries and all(e.order is not None for e in entries):
            return sorted(entries, key=lambda e: e.order)
        return list(entries)

    def extract_chapter(self, html: str, entry: ManifestEntry) -> ChapterPage:
        """Parse a chapter page; body is the direct <p> children of ``#chp_raw`` only."""
        if not html or not html.strip():
            self.logger.warning(f"Chapter {entry.position}: empty response body at {entry.url}")
            return ChapterPage(
                title=entry.title_hint or f"Chapter {entry.position}",
                body="",
                status=ChapterStatus.UNPARSEABLE,
            )

        sel = self.selector(html)
        title = self.chapter_title(sel, 'div.chapter-title', entry, use_og_title=False)
        body, status = self.body_from_container(sel, '#chp_raw.chp_raw')
        if status != ChapterStatus.OK:
            self.logger.warning(f"Chapter {entry.position}: {status.value} at {entry.url}")
        return ChapterPage(title=title, body=body, status=status)
