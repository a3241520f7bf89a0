"""Renderers for the non-EPUB output formats, plus format dispatch."""
import html
import logging
import re
from pathlib import Path
from typing import Optional

from bs4 import BeautifulSoup, NavigableString, Tag

from crawler.errors import RenderError
from crawler.fetcher import Fetcher
from epub_writer import write_epub
from models import EpubVersion, OutputFormat
from normalizer import ContentCleaner
from schemas import Work

logger = logging.getLogger(__name__)

_MARKDOWN_SPECIAL = re.compile(r'([\\`*_\[\]])')

_EMPHASIS = {
    'em': '*', 'i': '*',
    'strong': '**', 'b': '**',
    's': '~~',
}


def validate_work(work: Work) -> None:
    if not work.title.strip():
        raise RenderError("Cannot write: book title is empty.")
    if not work.author.strip():
        raise RenderError("Cannot write: book author is empty.")


def _write_file(path: Path, content: str) -> None:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding='utf-8')
    except OSError as e:
        raise RenderError(f"Failed to write output: {path}: {e}") from e


def write_json(work: Work, path: Path) -> None:
    """Write the canonical JSON form."""
    validate_work(work)
    _write_file(path, work.to_json() + "\n")


def write_html(work: Work, path: Path) -> None:
    """Write one HTML file: a header, then one section per chapter."""
    validate_work(work)
    cleaner = ContentCleaner()
    esc = html.escape

    lines = [
        '<!DOCTYPE html>',
        '<html lang="en">',
        '<head>',
        '  <meta charset="UTF-8"/>',
        f'  <title>{esc(work.title)}</title>',
        '</head>',
        '<body>',
        '  <header>',
        f'    <h1>{esc(work.title)}</h1>',
        f'    <p class="author">By {esc(work.author)}</p>',
    ]
    if work.description:
        lines.append(f'    <p class="description">{esc(work.description)}</p>')
    lines.append('  </header>')

    for chapter in work.chapters:
        lines.extend([
            f'  <section class="chapter" id="chapter-{chapter.index}">',
            f'    <h2>{esc(chapter.title)}</h2>',
            '    <div class="chapter-body">',
            cleaner.to_xhtml(chapter.body),
            '    </div>',
            '  </section>',
        ])

    lines.extend(['</body>', '</html>', ''])
    _write_file(path, '\n'.join(lines))


def body_to_markdown(body: str) -> str:
    """Convert a restricted-HTML body to Markdown paragraphs with emphasis kept."""
    if not body or not body.strip():
        return ""
    if '<' not in body:
        return body.strip()

    soup = BeautifulSoup(body, 'html.parser')
    paragraphs = soup.find_all('p') or [soup]
    out = []
    for p in paragraphs:
        text = _inline_markdown(p).strip()
        if text:
            out.append(text)
    return '\n\n'.join(out)


def _inline_markdown(node) -> str:
    parts = []
    for child in node.children:
        if isinstance(child, NavigableString):
            parts.append(_MARKDOWN_SPECIAL.sub(r'\\\1', re.sub(r'\s+', ' ', str(child))))
        elif isinstance(child, Tag):
            if child.name == 'br':
                parts.append('  \n')
                continue
            inner = _inline_markdown(child)
            marker = _EMPHASIS.get(child.name)
            if marker and inner.strip():
                # Markers must hug the text
                lead = inner[:len(inner) - len(inner.lstrip())]
                trail = inner[len(inner.rstrip()):]
                parts.append(f"{lead}{marker}{inner.strip()}{marker}{trail}")
            else:
                parts.append(inner)
    return ''.join(parts)


def write_markdown(work: Work, path: Path) -> None:
    """Write Markdown: ``# title``, ``By author``, then ``## chapter`` sections."""
    validate_work(work)
    parts = [f"# {work.title}", f"By {work.author}"]
    if work.description:
        parts.append(work.description)
    parts.append("---")
    for chapter in work.chapters:
        parts.append(f"## {chapter.title}")
        text = body_to_markdown(chapter.body)
        if text:
            parts.append(text)
    _write_file(path, '\n\n'.join(parts) + '\n')


def write_text(work: Work, path: Path) -> None:
    """Write plain text with ``--- Chapter N: title ---`` headings."""
    validate_work(work)
    cleaner = ContentCleaner()
    lines = [work.title, f"By {work.author}", ""]
    if work.description:
        lines.extend([work.description, ""])
    for chapter in work.chapters:
        lines.extend(["", f"--- Chapter {chapter.index}: {chapter.title} ---", ""])
        lines.append('\n\n'.join(cleaner.body_to_paragraphs(chapter.body)))
    _write_file(path, '\n'.join(lines) + '\n')


def write_output(
    work: Work,
    path: Path,
    fmt: OutputFormat,
    version: EpubVersion = EpubVersion.EPUB3,
    include_ncx: bool = False,
    include_toc_page: bool = True,
    fetcher: Optional[Fetcher] = None,
) -> None:
    """
    Render ``work`` to ``path`` in the selected format.

    EPUB flags are ignored by the other formats.
    """
    logger.info(f"Writing {fmt.value} to {path}")
    if fmt == OutputFormat.EPUB:
        write_epub(work, path, version=version, include_ncx=include_ncx,
                   include_toc_page=include_toc_page, fetcher=fetcher)
    elif fmt == OutputFormat.JSON:
        write_json(work, path)
    elif fmt == OutputFormat.HTML:
        write_html(work, path)
    elif fmt == OutputFormat.MARKDOWN:
        write_markdown(work, path)
    elif fmt == OutputFormat.TEXT:
        write_text(work, path)
    else:
        raise RenderError(f"Unsupported output format: {fmt}")
