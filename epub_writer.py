"""EPUB 2/3 container writer and epubcheck hook."""
import enum
import html
import logging
import os
import subprocess
import uuid
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from crawler.errors import EpubWriteError, FetchError, RenderError, ValidationError
from crawler.fetcher import Fetcher
from models import EpubVersion
from normalizer import ContentCleaner
from schemas import Work

logger = logging.getLogger(__name__)

MIMETYPE = "application/epub+zip"

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

# (magic prefix, extension, media type)
IMAGE_SIGNATURES = [
    (b"\xff\xd8\xff", "jpg", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "png", "image/png"),
    (b"GIF87a", "gif", "image/gif"),
    (b"GIF89a", "gif", "image/gif"),
]

EPUBCHECK_TIMEOUT = 600


class CoverKind(enum.Enum):
    NONE = "none"
    TITLE_ONLY = "title_only"
    IMAGE = "image"


@dataclass(frozen=True)
class CoverOutcome:
    """Result of resolving the cover: no cover page, a text-only page, or an image."""
    kind: CoverKind
    data: Optional[bytes] = None
    ext: Optional[str] = None
    media_type: Optional[str] = None

    @property
    def has_page(self) -> bool:
        return self.kind != CoverKind.NONE


def sniff_image(data: bytes) -> Optional[Tuple[str, str]]:
    """Return (extension, media type) if ``data`` starts like a known image format."""
    for magic, ext, media_type in IMAGE_SIGNATURES:
        if data.startswith(magic):
            return ext, media_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp", "image/webp"
    return None


def fetch_cover(cover_url: Optional[str], fetcher: Optional[Fetcher]) -> CoverOutcome:
    """
    Fetch the cover image.

    Never raises: any failure (network, HTTP status, not an image) falls back
    to a title-only cover page.
    """
    if not cover_url:
        return CoverOutcome(CoverKind.NONE)
    if fetcher is None:
        logger.warning(f"No fetcher available for cover {cover_url}; using title-only cover page")
        return CoverOutcome(CoverKind.TITLE_ONLY)

    try:
        data = fetcher.fetch(cover_url)
    except FetchError as e:
        logger.warning(f"Cover image could not be fetched ({cover_url}): {e}. Using title-only cover page.")
        return CoverOutcome(CoverKind.TITLE_ONLY)

    sniffed = sniff_image(data)
    if sniffed is None:
        logger.warning(f"Cover at {cover_url} is not a recognized image. Using title-only cover page.")
        return CoverOutcome(CoverKind.TITLE_ONLY)

    ext, media_type = sniffed
    logger.info(f"Fetched cover image ({media_type}, {len(data)} bytes)")
    return CoverOutcome(CoverKind.IMAGE, data=data, ext=ext, media_type=media_type)


def esc(text: str) -> str:
    return html.escape(text or "", quote=True)


def book_identifier(work: Work) -> str:
    """Stable identifier: the story URL, else a UUID derived from title and author."""
    if work.source_url:
        return work.source_url
    return f"urn:uuid:{uuid.uuid5(uuid.NAMESPACE_URL, f'{work.title}|{work.author}')}"


def validate_work(work: Work) -> None:
    """Reject a Work that cannot be packaged."""
    if not work.title.strip():
        raise RenderError("Cannot write EPUB: book title is empty.")
    if not work.author.strip():
        raise RenderError("Cannot write EPUB: book author is empty.")
    if not work.chapters:
        raise RenderError("Cannot write EPUB: book has no chapters.")


def write_epub(
    work: Work,
    path: Path,
    version: EpubVersion = EpubVersion.EPUB3,
    include_ncx: bool = False,
    include_toc_page: bool = True,
    fetcher: Optional[Fetcher] = None,
) -> CoverOutcome:
    """
    Write ``work`` as an EPUB archive.

    Args:
        work: The assembled Work
        path: Output file path
        version: EPUB 3 (default) or EPUB 2
        include_ncx: Also write toc.ncx for EPUB 3 (always written for EPUB 2)
        include_toc_page: Add a visible table of contents after the cover
        fetcher: Used to fetch the cover image

    Returns:
        How the cover was resolved

    Raises:
        RenderError: If the Work has no title, author or chapters
        EpubWriteError: If the archive cannot be written
    """
    validate_work(work)
    path = Path(path)
    cover = fetch_cover(work.cover_url, fetcher)
    epub3 = version == EpubVersion.EPUB3
    write_ncx = include_ncx or not epub3
    cleaner = ContentCleaner()

    files: List[Tuple[str, str]] = [
        ("OEBPS/content.opf", build_opf(work, cover, epub3, write_ncx, include_toc_page)),
    ]
    if epub3:
        files.append(("OEBPS/nav.xhtml", build_nav(work)))
    if write_ncx:
        files.append(("OEBPS/toc.ncx", build_ncx(work)))
    if cover.has_page:
        files.append(("OEBPS/cover.xhtml", build_cover_page(work, cover, epub3)))
    if include_toc_page:
        files.append(("OEBPS/toc.xhtml", build_toc_page(work, epub3)))
    for number, chapter in enumerate(work.chapters, start=1):
        body = cleaner.to_xhtml(chapter.body, xhtml11=not epub3)
        files.append((f"OEBPS/chapter-{number}.xhtml", xhtml_document(chapter.title, f"<h2>{esc(chapter.title)}</h2>\n{body}", epub3)))

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.writestr("mimetype", MIMETYPE, compress_type=zipfile.ZIP_STORED)
            zf.writestr("META-INF/container.xml", CONTAINER_XML)
            for name, content in files:
                zf.writestr(name, content)
            if cover.kind == CoverKind.IMAGE:
                zf.writestr(f"OEBPS/images/cover.{cover.ext}", cover.data)
    except (OSError, zipfile.BadZipFile) as e:
        if path.is_file():
            os.unlink(path)
        raise EpubWriteError(f"Cannot write EPUB: {path}: {e}") from e

    logger.info(f"Wrote EPUB {version.value} to {path} ({len(work.chapters)} chapters)")
    return cover


def xhtml_document(title: str, body: str, epub3: bool, extra_ns: str = "") -> str:
    """Wrap block content in an XHTML 1.1 (EPUB 2) or HTML5 (EPUB 3) document."""
    if epub3:
        doctype = "<!DOCTYPE html>"
    else:
        doctype = ('<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.1//EN" '
                   '"http://www.w3.org/TR/xhtml11/DTD/xhtml11.dtd">')
    head_meta = '<meta charset="UTF-8"/>' if epub3 else '<meta http-equiv="Content-Type" content="application/xhtml+xml; charset=utf-8"/>'
    return f"""<?xml version="1.0" encoding="UTF-8"?>
{doctype}
<html xmlns="http://www.w3.org/1999/xhtml"{extra_ns} xml:lang="en">
<head>
  {head_meta}
  <title>{esc(title)}</title>
</head>
<body>
{body}
</body>
</html>
"""


def build_opf(work: Work, cover: CoverOutcome, epub3: bool, include_ncx: bool, include_toc_page: bool) -> str:
    """Package document: metadata, manifest and spine."""
    manifest = []
    if epub3:
        manifest.append('<item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>')
    if include_ncx:
        manifest.append('<item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>')
    if cover.kind == CoverKind.IMAGE:
        properties = ' properties="cover-image"' if epub3 else ""
        manifest.append(f'<item id="cover-img" href="images/cover.{cover.ext}" media-type="{cover.media_type}"{properties}/>')
    if cover.has_page:
        manifest.append('<item id="cover" href="cover.xhtml" media-type="application/xhtml+xml"/>')
    if include_toc_page:
        manifest.append('<item id="toc-page" href="toc.xhtml" media-type="application/xhtml+xml"/>')
    for number in range(1, len(work.chapters) + 1):
        manifest.append(f'<item id="chapter-{number}" href="chapter-{number}.xhtml" media-type="application/xhtml+xml"/>')

    spine = []
    if cover.has_page:
        spine.append('<itemref idref="cover"/>')
    if include_toc_page:
        spine.append('<itemref idref="toc-page"/>')
    spine.extend(f'<itemref idref="chapter-{n}"/>' for n in range(1, len(work.chapters) + 1))

    metadata = [
        f'<dc:identifier id="book-id">{esc(book_identifier(work))}</dc:identifier>',
        f"<dc:title>{esc(work.title)}</dc:title>",
        f"<dc:creator>{esc(work.author)}</dc:creator>",
        "<dc:language>en</dc:language>",
    ]
    if work.description:
        metadata.append(f"<dc:description>{esc(work.description)}</dc:description>")
    if epub3:
        modified = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        metadata.append(f'<meta property="dcterms:modified">{modified}</meta>')
    if cover.kind == CoverKind.IMAGE:
        metadata.append('<meta name="cover" content="cover-img"/>')

    guide = ""
    if cover.has_page:
        guide = '\n  <guide>\n    <reference type="cover" href="cover.xhtml" title="Cover"/>\n  </guide>'

    spine_attr = ' toc="ncx"' if include_ncx else ""
    nl = "\n    "
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" unique-identifier="book-id" version="{'3.0' if epub3 else '2.0'}">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
    {nl.join(metadata)}
  </metadata>
  <manifest>
    {nl.join(manifest)}
  </manifest>
  <spine{spine_attr}>
    {nl.join(spine)}
  </spine>{guide}
</package>
"""


def _chapter_list(work: Work) -> str:
    return "\n".join(
        f'    <li><a href="chapter-{n}.xhtml">{esc(c.title)}</a></li>'
        for n, c in enumerate(work.chapters, start=1)
    )


def build_nav(work: Work) -> str:
    """EPUB 3 navigation document."""
    body = f"""  <nav epub:type="toc" id="toc">
    <h1>Contents</h1>
    <ol>
{_chapter_list(work)}
    </ol>
  </nav>"""
    return xhtml_document("Table of Contents", body, True, extra_ns=' xmlns:epub="http://www.idpf.org/2007/ops"')


def build_toc_page(work: Work, epub3: bool) -> str:
    """Visible table of contents shown after the cover."""
    body = f"""  <h1>Table of Contents</h1>
  <ol>
{_chapter_list(work)}
  </ol>"""
    return xhtml_document("Table of Contents", body, epub3)


def build_ncx(work: Work) -> str:
    """Legacy NCX navigation (EPUB 2, optional for EPUB 3)."""
    points = "\n".join(
        f"""    <navPoint id="navpoint-{n}" playOrder="{n}">
      <navLabel><text>{esc(c.title)}</text></navLabel>
      <content src="chapter-{n}.xhtml"/>
    </navPoint>"""
        for n, c in enumerate(work.chapters, start=1)
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <head>
    <meta name="dtb:uid" content="{esc(book_identifier(work))}"/>
    <meta name="dtb:depth" content="1"/>
    <meta name="dtb:totalPageCount" content="0"/>
    <meta name="dtb:maxPageNumber" content="0"/>
  </head>
  <docTitle>
    <text>{esc(work.title)}</text>
  </docTitle>
  <navMap>
{points}
  </navMap>
</ncx>
"""


def build_cover_page(work: Work, cover: CoverOutcome, epub3: bool) -> str:
    """Cover page: the image, or title and author as text."""
    if cover.kind == CoverKind.IMAGE:
        body = f"""  <div style="text-align: center;">
    <img src="images/cover.{cover.ext}" alt="Cover" style="max-width: 100%; height: auto;"/>
  </div>"""
    else:
        body = f"""  <div style="text-align: center; font-family: serif; margin-top: 3em;">
    <h1 style="font-size: 1.5em;">{esc(work.title)}</h1>
    <p style="margin-top: 1em;">{esc(work.author)}</p>
  </div>"""
    return xhtml_document("Cover", body, epub3)


def validate_epub(path: Path) -> None:
    """
    Run ``epubcheck`` on a written EPUB.

    Raises:
        ValidationError: If epubcheck is not installed or reports errors
    """
    command = ["epubcheck", str(path)]
    logger.info(f"Executing command: {' '.join(command)}")
    try:
        result = subprocess.run(command, capture_output=True, text=True, timeout=EPUBCHECK_TIMEOUT)
    except FileNotFoundError as e:
        raise ValidationError("epubcheck not found; install it or omit --validate") from e
    except subprocess.TimeoutExpired as e:
        raise ValidationError(f"epubcheck timed out after {EPUBCHECK_TIMEOUT}s") from e

    for line in (result.stdout or "").strip().splitlines():
        if line.strip():
            logger.debug(f"  {line}")

    if result.returncode != 0:
        details = (result.stderr or result.stdout or "").strip().splitlines()
        raise ValidationError(
            f"epubcheck reported errors for {path}: " + ("; ".join(details[-5:]) or f"exit code {result.returncode}")
        )
    logger.info(f"epubcheck passed: {path}")
