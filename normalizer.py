"""Content normalization and cleaning utilities."""
import html
import re
from typing import Iterable, List, Optional
from urllib.parse import urlsplit, urlunsplit

import bleach
from bs4 import BeautifulSoup, NavigableString, Tag
from slugify import slugify
import logging

logger = logging.getLogger(__name__)


class ContentCleaner:
    """
    Clean scraped chapter markup down to the restricted paragraph subset.

    Chapter bodies only ever contain ``<p>`` paragraphs with inline emphasis
    and line breaks, whatever the source site.
    """

    # Markup allowed inside a paragraph
    INLINE_TAGS = ['br', 'em', 'strong', 'i', 'b', 'u', 's', 'sub', 'sup']

    def clean_inline(self, fragment: str) -> str:
        """Strip everything but inline markup from one paragraph's inner HTML."""
        cleaned = bleach.clean(fragment, tags=self.INLINE_TAGS, attributes={}, strip=True)
        return self._normalize_whitespace(cleaned)

    def paragraphs_to_body(self, fragments: Iterable[str]) -> str:
        """
        Build a chapter body from the inner HTML of each paragraph.

        Paragraphs that are empty once cleaned are dropped.
        """
        out = []
        for fragment in fragments:
            inner = self.clean_inline(fragment)
            if not self.extract_text(inner):
                continue
            out.append(f"<p>{inner}</p>")
        return ''.join(out)

    def text_to_body(self, text: str) -> str:
        """Wrap each non-blank line of plain text in an escaped ``<p>``."""
        lines = (re.sub(r'\s+', ' ', line).strip() for line in (text or '').splitlines())
        return ''.join(f"<p>{html.escape(line, quote=False)}</p>" for line in lines if line)

    def _normalize_whitespace(self, html_text: str) -> str:
        """Collapse runs of whitespace and trim."""
        html_text = re.sub(r'\s+', ' ', html_text)
        html_text = re.sub(r'(<br\s*/?>\s*)+$', '', html_text.strip())
        html_text = re.sub(r'^(\s*<br\s*/?>)+', '', html_text)
        return html_text.strip()

    def extract_text(self, html_text: str) -> str:
        """
        Extract plain text from HTML.

        Args:
            html_text: HTML string

        Returns:
            Plain text
        """
        if not html_text:
            return ""
        soup = BeautifulSoup(html_text, 'lxml')
        return soup.get_text(separator=' ', strip=True)

    def body_to_paragraphs(self, body: str) -> List[str]:
        """
        Split a chapter body into plain-text paragraphs.

        Plain-text bodies (no markup) are split on blank lines.
        """
        if not body or not body.strip():
            return []
        if '<' not in body:
            return [p.strip() for p in re.split(r'\n\s*\n', body) if p.strip()]

        soup = BeautifulSoup(body, 'html.parser')
        for br in soup.find_all('br'):
            br.replace_with('\n')
        paragraphs = soup.find_all('p')
        if not paragraphs:
            text = soup.get_text().strip()
            return [text] if text else []
        out = []
        for p in paragraphs:
            text = '\n'.join(line.strip() for line in p.get_text().split('\n')).strip()
            if text:
                out.append(text)
        return out

    def to_xhtml(self, body: str, xhtml11: bool = False) -> str:
        """
        Render a chapter body as well-formed XHTML block content.

        Void elements are self-closed, named entities become characters and
        stray top-level text or inline markup is wrapped in ``<p>``.

        Args:
            body: Chapter body (restricted HTML or plain text)
            xhtml11: Target XHTML 1.1 (EPUB 2), which has no ``u`` or ``s``
                elements; they become a styled ``span`` and ``del``
        """
        if not body or not body.strip():
            return ""
        if '<' not in body:
            return self.text_to_body(body)

        soup = BeautifulSoup(body, 'html.parser')
        pending: List = []
        for child in list(soup.children):
            if isinstance(child, Tag) and child.name == 'p':
                self._wrap(soup, pending)
                pending = []
            elif isinstance(child, NavigableString) and not child.strip():
                child.extract()
            else:
                pending.append(child)
        self._wrap(soup, pending)

        if xhtml11:
            for tag in soup.find_all('u'):
                tag.name = 'span'
                tag['style'] = 'text-decoration: underline'
            for tag in soup.find_all('s'):
                tag.name = 'del'
        return str(soup)

    @staticmethod
    def _wrap(soup: BeautifulSoup, nodes: List) -> None:
        if not nodes:
            return
        wrapper = soup.new_tag('p')
        nodes[0].insert_before(wrapper)
        for node in nodes:
            wrapper.append(node.extract())


class SlugGenerator:
    """Generate filesystem-safe slugs from titles."""

    @staticmethod
    def generate_slug(text: str, max_length: int = 120, default: str = "book") -> str:
        """
        Generate a slug from text.

        Args:
            text: Input text (e.g., book title)
            max_length: Maximum slug length
            default: Slug used when nothing usable remains

        Returns:
            Slugified text
        """
        return slugify(text or "", max_length=max_length) or default


def strip_html_tags(text: str) -> str:
    """Plain text of an HTML snippet (used for descriptions)."""
    if not text:
        return ""
    soup = BeautifulSoup(text, 'html.parser')
    for br in soup.find_all('br'):
        br.replace_with('\n')
    for block in soup.find_all(['p', 'div', 'li', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6']):
        block.insert_after('\n')
    lines = [re.sub(r'[ \t\xa0]+', ' ', line).strip() for line in soup.get_text().splitlines()]
    return re.sub(r'\n{3,}', '\n\n', '\n'.join(lines)).strip()


def strip_title_site_suffix(title: str, suffixes: Iterable[str]) -> str:
    """
    Remove a trailing site name such as `` | Scribble Hub`` from a page title.

    Only the first matching suffix is removed so separators that are part of
    the real title survive.
    """
    title = (title or "").strip()
    for suffix in suffixes:
        if title.endswith(suffix):
            return title[:-len(suffix)].strip()
    return title


def normalize_url(url: str) -> str:
    """
    Normalize a URL for deduplication.

    Lower-cases scheme and host, drops the fragment and any trailing slash.
    """
    parts = urlsplit((url or "").strip())
    path = parts.path.rstrip('/') or '/'
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ''))


def first_text(*candidates: Optional[str]) -> Optional[str]:
    """Return the first candidate that is non-empty after stripping."""
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()
    return None
