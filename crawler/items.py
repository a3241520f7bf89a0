"""Intermediate records passed between spiders and pipelines."""
from dataclasses import dataclass, field
from typing import List, Optional

from models import ChapterStatus
from schemas import Chapter


@dataclass(frozen=True)
class ManifestEntry:
    """One chapter listed in the table of contents."""
    position: int  # 1-based, assigned by the TOC discoverer
    url: str
    title_hint: Optional[str] = None
    locked: bool = False
    order: Optional[int] = None  # Site-provided reading order, when the site exposes one


@dataclass
class TocPage:
    """Entries found on one TOC page plus the URL of the next page, if any."""
    entries: List[ManifestEntry] = field(default_factory=list)
    next_url: Optional[str] = None


@dataclass(frozen=True)
class ChapterPage:
    """Result of running a spider's chapter extraction on one page."""
    title: str
    body: str
    status: ChapterStatus


@dataclass(frozen=True)
class BookMeta:
    """Book-level metadata from the story page."""
    title: str
    author: str
    description: Optional[str] = None
    cover_url: Optional[str] = None


@dataclass(frozen=True)
class ChapterRecord:
    """A finished chapter tagged with its manifest position, before final numbering."""
    position: int
    chapter: Chapter
