"""Polite HTTP fetcher with request pacing and retry on transient failures."""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

import requests
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt

from crawler.errors import ConfigError, NetworkError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; serialscrape/0.1; +https://github.com/serialscrape)"
DEFAULT_TIMEOUT = 30.0
DEFAULT_DELAY = 2.0
DEFAULT_ATTEMPTS = 3
MAX_REDIRECTS = 10

DEFAULT_REQUEST_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en",
}

# Status codes worth another attempt; every other non-success status is terminal
RETRY_HTTP_CODES = frozenset([429])


def default_backoff(attempts: int) -> Tuple[float, ...]:
    """Exponential backoff (1, 2, 4, ...) with one value per retry."""
    return tuple(float(2 ** i) for i in range(max(attempts - 1, 0)))


def is_retryable_status(status: int) -> bool:
    """Return True for HTTP 5xx and 429."""
    return status >= 500 or status in RETRY_HTTP_CODES


@dataclass(frozen=True)
class RetryPolicy:
    """
    Number of attempts for one URL and the delay before each retry.

    ``backoff[i]`` is slept before retry ``i + 1``, so there must be exactly
    ``attempts - 1`` values.
    """
    attempts: int = DEFAULT_ATTEMPTS
    backoff: Tuple[float, ...] = field(default_factory=lambda: default_backoff(DEFAULT_ATTEMPTS))

    def __post_init__(self):
        if self.attempts < 1:
            raise ConfigError(f"Retry attempts must be at least 1, got {self.attempts}")
        if len(self.backoff) != self.attempts - 1:
            raise ConfigError(
                f"Retry backoff must have {self.attempts - 1} value(s) for "
                f"{self.attempts} attempt(s), got {len(self.backoff)}: {list(self.backoff)}"
            )
        if any(delay < 0 for delay in self.backoff):
            raise ConfigError(f"Retry backoff values must not be negative: {list(self.backoff)}")
        object.__setattr__(self, "backoff", tuple(float(d) for d in self.backoff))


class _TransientFailure(Exception):
    """Internal marker for a failure that may succeed on retry."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


def _policy_wait(policy: RetryPolicy) -> Callable[[RetryCallState], float]:
    """tenacity wait: ``backoff[n - 1]`` after failed attempt ``n``."""

    def wait(retry_state: RetryCallState) -> float:
        index = retry_state.attempt_number - 1
        # Also evaluated after the final attempt, before the stop check
        return policy.backoff[index] if index < len(policy.backoff) else 0.0

    return wait


def _log_retry(url: str, policy: RetryPolicy) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        failure = retry_state.outcome.exception() if retry_state.outcome else None
        backoff = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"Retrying {url} in {backoff:g}s "
            f"(attempt {retry_state.attempt_number + 1}/{policy.attempts}): {failure}"
        )

    return before_sleep


class Fetcher:
    """
    Blocking HTTP client shared by one scrape run.

    Enforces a minimum delay between consecutive requests and retries
    transient failures (connection errors, timeouts, HTTP 5xx and 429)
    according to the retry policy. The clock and sleep functions are
    injectable so pacing and backoff can be tested without waiting.

    Not safe to share between concurrent runs.
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = DEFAULT_TIMEOUT,
        delay: float = DEFAULT_DELAY,
        retry_policy: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if timeout <= 0:
            raise ConfigError(f"Timeout must be positive, got {timeout}")
        if delay < 0:
            raise ConfigError(f"Delay must not be negative, got {delay}")

        self.user_agent = user_agent
        self.timeout = timeout
        self.delay = delay
        self.retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._sleep = sleep
        self._last_request: Optional[float] = None

        self.session = session or requests.Session()
        self.session.max_redirects = MAX_REDIRECTS
        self.session.headers.update(DEFAULT_REQUEST_HEADERS)
        self.session.headers["User-Agent"] = user_agent

    def fetch(self, url: str) -> bytes:
        """Fetch ``url`` and return the response body."""
        return self.fetch_response(url).content

    def fetch_text(self, url: str) -> str:
        """Fetch ``url`` and decode the body (declared charset, else UTF-8)."""
        response = self.fetch_response(url)
        # requests assumes ISO-8859-1 for text/* without a charset
        declared = "charset" in response.headers.get("Content-Type", "").lower()
        encoding = (response.encoding if declared else None) or "utf-8"
        try:
            return response.content.decode(encoding, errors="replace")
        except LookupError:
            return response.content.decode("utf-8", errors="replace")

    def fetch_response(self, url: str) -> requests.Response:
        """
        GET ``url`` with pacing and retries.

        Args:
            url: Absolute URL to fetch

        Returns:
            The successful (2xx) response with its body loaded

        Raises:
            NetworkError: On terminal failures or once retries are exhausted
        """
        policy = self.retry_policy
        retrying = Retrying(
            retry=retry_if_exception_type(_TransientFailure),
            wait=_policy_wait(policy),
            stop=stop_after_attempt(policy.attempts),
            sleep=self._sleep,
            reraise=True,
            before_sleep=_log_retry(url, policy),
        )

        try:
            return retrying(self._attempt, url)
        except _TransientFailure as e:
            logger.error(f"Max retries reached for {url}")
            raise NetworkError(
                f"Network error: could not fetch {url} after {policy.attempts} attempt(s): {e}",
                url,
                status=e.status,
            ) from (e.__cause__ or e)

    def _attempt(self, url: str) -> requests.Response:
        """Issue one request; raise _TransientFailure or NetworkError on failure."""
        self._wait_delay()
        logger.debug(f"GET {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise _TransientFailure(f"{type(e).__name__}: {e}") from e
        except requests.RequestException as e:
            raise NetworkError(f"Network error: bad response from {url}: {e}", url) from e
        finally:
            self._last_request = self._clock()

        status = response.status_code
        if is_retryable_status(status):
            raise _TransientFailure(f"HTTP {status}", status=status)
        if not 200 <= status < 300:
            raise NetworkError(f"HTTP {status} when fetching: {url}", url, status=status)
        return response

    def _wait_delay(self) -> None:
        """Sleep until the configured delay has passed since the last request."""
        if self._last_request is None or self.delay <= 0:
            return
        remaining = self.delay - (self._clock() - self._last_request)
        if remaining > 0:
            self._sleep(remaining)

    def close(self) -> None:
        """Close the underlying connection pool."""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
