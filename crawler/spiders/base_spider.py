"""Base spider class for all fiction sites."""
import html
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

from scrapy import Selector

from crawler.errors import InvalidUrlError
from crawler.items import BookMeta, ChapterPage, ManifestEntry, TocPage
from models import ChapterStatus
from normalizer import ContentCleaner, first_text, strip_html_tags, strip_title_site_suffix


class BaseSpider(ABC):
    """
    Base spider that all site-specific spiders must inherit from.

    A spider only parses HTML it is handed; fetching, pagination, policies and
    assembly live in the pipelines so both sites behave identically outside
    of markup handling.
    """

    # Must be set by child spiders
    name: str = "base"
    allowed_domains: list = []
    base_url: str = ""
    title_suffixes: Tuple[str, ...] = ()

    def __init__(self, url: str, check_host: bool = True):
        """
        Initialize spider with the story URL.

        Args:
            url: The story's index page URL
            check_host: Reject hosts outside ``allowed_domains`` (off when the
                site was forced by the user)

        Raises:
            InvalidUrlError: If the URL is not a story page of this site
        """
        self.logger = logging.getLogger(f"crawler.spiders.{self.name}")
        self.cleaner = ContentCleaner()
        self.check_host = check_host
        self.source_url = self.ensure_story_url(url)

    def ensure_story_url(self, url: str) -> str:
        """Check that ``url`` is an http(s) URL on one of ``allowed_domains``."""
        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https') or not parsed.hostname:
            raise InvalidUrlError(url, "expected an absolute http(s) URL")
        host = parsed.hostname.lower()
        if self.check_host and not any(host == d or host.endswith('.' + d) for d in self.allowed_domains):
            raise InvalidUrlError(url, f"host {host} is not a {self.name} host")
        return url

    @abstractmethod
    def extract_book_meta(self, html: str) -> BookMeta:
        """
        Extract book-level metadata from the story page.

        Args:
            html: Story page HTML

        Returns:
            BookMeta with title and author always set

        Raises:
            MetadataParseError: If title or author cannot be found
        """
        pass

    @abstractmethod
    def discover_toc_page(self, html: str, page_number: int) -> TocPage:
        """
        Extract chapter entries from one TOC page.

        Args:
            html: TOC page HTML
            page_number: 1-based number of this TOC page

        Returns:
            TocPage with entries in reading order (positions unassigned) and
            the next page URL, or None when this is the last page

        Raises:
            TocParseError: If the page has no recognizable chapter list
        """
        pass

    @abstractmethod
    def extract_chapter(self, html: str, entry: ManifestEntry) -> ChapterPage:
        """
        Extract title and body from a chapter page.

        Never raises for missing markup: a missing content container yields
        ``UNPARSEABLE`` and a container without text yields ``EMPTY``.

        Args:
            html: Chapter page HTML (may be empty)
            entry: Manifest entry the page was fetched for
        """
        pass

    def order_manifest(self, entries: List[ManifestEntry]) -> List[ManifestEntry]:
        """Put merged TOC entries in reading order. Default keeps encounter order."""
        return list(entries)

    # Helpers shared by child spiders

    def resolve_url(self, href: str, base: Optional[str] = None) -> str:
        """Resolve a possibly relative link against ``base`` (default: site origin)."""
        return urljoin(base or self.base_url + '/', href.strip())

    def resolve_cover(self, src: Optional[str]) -> Optional[str]:
        """Absolute cover URL; relative sources resolve against the story page."""
        return self.resolve_url(src, base=self.source_url) if src else None

    @staticmethod
    def selector(html: str) -> Selector:
        return Selector(text=html or "")

    @staticmethod
    def text_of(sel: Selector, css: str) -> Optional[str]:
        """Whitespace-collapsed text of the first element matching ``css``."""
        node = sel.css(css)
        if not node:
            return None
        text = ''.join(node[0].xpath('.//text()').getall())
        text = re.sub(r'\s+', ' ', text).strip()
        return text or None

    @staticmethod
    def inner_html(node: Selector) -> str:
        """Serialized children of ``node``; text is re-escaped so it cannot turn into markup."""
        parts = []
        for child in node.xpath('./node()'):
            if isinstance(child.root, str):
                parts.append(html.escape(child.root, quote=False))
            else:
                parts.append(child.get())
        return ''.join(parts)

    @staticmethod
    def meta_content(sel: Selector, prop: str) -> Optional[str]:
        value = sel.css(f'meta[property="{prop}"]::attr(content)').get()
        return value.strip() if value and value.strip() else None

    def json_ld_book(self, sel: Selector) -> Optional[BookMeta]:
        """Return metadata from the first JSON-LD object of type Book, if any."""
        for raw in sel.css('script[type="application/ld+json"]::text').getall():
            try:
                data = json.loads(raw)
            except ValueError:
                self.logger.debug("Skipping unparseable JSON-LD block")
                continue
            for obj in self._json_ld_objects(data):
                meta = self._book_from_json_ld(obj)
                if meta:
                    return replace(meta, cover_url=self.resolve_cover(meta.cover_url))
        return None

    @staticmethod
    def _json_ld_objects(data) -> Iterable[dict]:
        if isinstance(data, list):
            for item in data:
                if isinstance(item, dict):
                    yield item
        elif isinstance(data, dict):
            yield data
            for item in data.get('@graph', []) or []:
                if isinstance(item, dict):
                    yield item

    @staticmethod
    def _book_from_json_ld(obj: dict) -> Optional[BookMeta]:
        kind = obj.get('@type')
        kinds = kind if isinstance(kind, list) else [kind]
        if 'Book' not in kinds:
            return None

        author = obj.get('author')
        if isinstance(author, list):
            author = author[0] if author else None
        if isinstance(author, dict):
            author = author.get('name')

        image = obj.get('image')
        if isinstance(image, list):
            image = image[0] if image else None
        if isinstance(image, dict):
            image = image.get('url')

        description = obj.get('description')
        title = first_text(obj.get('name') if isinstance(obj.get('name'), str) else None)
        author = first_text(author if isinstance(author, str) else None)
        if not title or not author:
            return None
        return BookMeta(
            title=title,
            author=author,
            description=first_text(strip_html_tags(description)) if isinstance(description, str) else None,
            cover_url=first_text(image if isinstance(image, str) else None),
        )

    def chapter_title(self, sel: Selector, heading_css: str, entry: ManifestEntry, use_og_title: bool = True) -> str:
        """
        Resolve a chapter title.

        Order: heading selector, og:title, <title> (site suffix stripped),
        the TOC title hint, then ``Chapter N``.
        """
        og_title = self.meta_content(sel, 'og:title') if use_og_title else None
        page_title = sel.css('title::text').get()
        return first_text(
            self.text_of(sel, heading_css),
            strip_title_site_suffix(og_title, self.title_suffixes) if og_title else None,
            strip_title_site_suffix(page_title, self.title_suffixes) if page_title else None,
            entry.title_hint,
        ) or f"Chapter {entry.position}"

    def body_from_container(self, sel: Selector, container_css: str, hidden_classes: Iterable[str] = ()) -> Tuple[str, ChapterStatus]:
        """
        Build a restricted-HTML body from the direct ``<p>`` children of one container.

        Nested containers (author notes, ads, comments) are not read.

        Returns:
            (body, status) where status is OK, EMPTY or UNPARSEABLE
        """
        container = sel.css(container_css)
        if not container:
            return "", ChapterStatus.UNPARSEABLE

        hidden = set(hidden_classes)
        fragments = []
        for p in container[0].xpath('./p'):
            classes = set((p.attrib.get('class') or '').split())
            if classes & hidden:
                continue
            fragments.append(self.inner_html(p))

        body = self.cleaner.paragraphs_to_body(fragments)
        if not body:
            return "", ChapterStatus.EMPTY
        return body, ChapterStatus.OK
