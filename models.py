"""Enumerations shared across the scraper, pipelines and writers."""
import enum


class ChapterStatus(str, enum.Enum):
    """Outcome of extracting one chapter."""
    OK = "ok"
    LOCKED = "locked"
    EMPTY = "empty"
    UNPARSEABLE = "unparseable"


class ChapterPolicy(str, enum.Enum):
    """What to do with a locked, empty or unparseable chapter."""
    SKIP = "skip"
    PLACEHOLDER = "placeholder"
    FAIL = "fail"


class Site(str, enum.Enum):
    """Supported fiction sites."""
    ROYALROAD = "royalroad"
    SCRIBBLEHUB = "scribblehub"

    @classmethod
    def from_name(cls, value: str) -> "Site":
        """Parse a site name or its short alias (rr, sh)."""
        aliases = {
            'royalroad': cls.ROYALROAD,
            'rr': cls.ROYALROAD,
            'scribblehub': cls.SCRIBBLEHUB,
            'sh': cls.SCRIBBLEHUB,
        }
        site = aliases.get(value.strip().lower())
        if site is None:
            raise ValueError(f"Invalid site: '{value}'. Use 'royalroad' or 'scribblehub'.")
        return site


class OutputFormat(str, enum.Enum):
    """Renderer selection."""
    EPUB = "epub"
    JSON = "json"
    HTML = "html"
    MARKDOWN = "markdown"
    TEXT = "text"

    @property
    def extension(self) -> str:
        return {
            OutputFormat.EPUB: "epub",
            OutputFormat.JSON: "json",
            OutputFormat.HTML: "html",
            OutputFormat.MARKDOWN: "md",
            OutputFormat.TEXT: "txt",
        }[self]

    @classmethod
    def from_name(cls, value: str) -> "OutputFormat":
        aliases = {'md': cls.MARKDOWN, 'txt': cls.TEXT}
        value = value.strip().lower()
        if value in aliases:
            return aliases[value]
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"Invalid format: '{value}'. Use epub, json, html, markdown, or text."
            ) from None


class EpubVersion(str, enum.Enum):
    """EPUB major version."""
    EPUB2 = "2"
    EPUB3 = "3"
