"""Error taxonomy shared by the fetcher, spiders, pipelines and writers."""
from typing import Optional


class ScraperError(Exception):
    """Base class for every error the scraper reports to the user."""
    pass


# Input errors: fail fast, never retried
class InputError(ScraperError):
    """Bad user input: URL, site, configuration, resume file or output path."""
    pass


class InvalidUrlError(InputError):
    """Raised when a URL cannot be parsed or is not a story URL."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid URL: {url}: {reason}")


class UnsupportedSiteError(InputError):
    """Raised when no spider is registered for the URL host."""

    def __init__(self, host: str):
        self.host = host
        super().__init__(
            f"Unsupported site: {host}. Use --site royalroad or --site scribblehub to override."
        )


class ConfigError(InputError):
    """Raised when settings are invalid (e.g. retry backoff length mismatch)."""
    pass


class ResumeMismatchError(InputError):
    """Raised when a resume file was produced for a different story."""
    pass


class OutputPathError(InputError):
    """Raised when the output path cannot be written to."""
    pass


# Network errors
class FetchError(ScraperError):
    """Base class for failures of the fetch engine."""

    def __init__(self, message: str, url: str, status: Optional[int] = None):
        self.url = url
        self.status = status
        super().__init__(message)


class NetworkError(FetchError):
    """
    Terminal network failure.

    Raised immediately for non-retryable statuses and malformed responses, or
    after the retry policy is exhausted on transient failures. The underlying
    cause is chained as ``__cause__``.
    """
    pass


# Extraction errors
class ExtractionError(ScraperError):
    """Base class for errors that make the extracted content unusable."""
    pass


class TocParseError(ExtractionError):
    """Raised when the table of contents cannot be parsed."""
    pass


class MetadataParseError(ExtractionError):
    """Raised when the story page lacks a title or author."""
    pass


class EmptyChapterListError(ExtractionError):
    """Raised when the first TOC page yields no chapters."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(
            f"Story page has no chapters (possibly deleted or access restricted): {url}"
        )


class NoChaptersRetrievedError(ExtractionError):
    """Raised when no chapter survives policy application."""

    def __init__(self):
        super().__init__("No chapters could be retrieved (all locked, missing, or failed).")


# Policy-triggered failures
class PolicyError(ScraperError):
    """Raised when a chapter policy of ``fail`` is triggered."""

    def __init__(self, message: str, position: int, url: str):
        self.position = position
        self.url = url
        super().__init__(message)


class LockedChapterError(PolicyError):
    """A locked (premium) chapter was found and the locked policy is ``fail``."""

    def __init__(self, position: int, url: str):
        super().__init__(
            f"Chapter {position} is locked (premium) at {url}. "
            f"Use --locked-chapters skip or placeholder to continue without it.",
            position,
            url,
        )


class EmptyChapterError(PolicyError):
    """An empty or unparseable chapter was found and the empty policy is ``fail``."""

    def __init__(self, position: int, url: str, reason: str = "has no content"):
        self.reason = reason
        super().__init__(f"Chapter {position} {reason} at {url}.", position, url)


# Render errors
class RenderError(ScraperError):
    """Content was retrieved but could not be packaged."""
    pass


class EpubWriteError(RenderError):
    """Raised when the EPUB archive cannot be written."""
    pass


class ValidationError(RenderError):
    """Raised when the post-write validator is missing or rejects the output."""
    pass
