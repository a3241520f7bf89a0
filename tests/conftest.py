import pytest

from crawler.fetcher import Fetcher, RetryPolicy
from schemas import Chapter, Work


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self, start=100.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fetcher(clock):
    """Fetcher without pacing or retries, on a fake clock."""
    f = Fetcher(
        user_agent="serialscrape-tests",
        timeout=5,
        delay=0,
        retry_policy=RetryPolicy(attempts=1, backoff=()),
        clock=clock,
        sleep=clock.sleep,
    )
    yield f
    f.close()


@pytest.fixture
def sample_work():
    return Work(
        title="Test Book",
        author="Test Author",
        description="A test & more.",
        chapters=(
            Chapter(title="Chapter One", index=1, body="<p>First <em>paragraph</em>.</p><p>Second paragraph.</p>"),
            Chapter(title="Chapter Two", index=2, body="Plain line one.\n\nPlain line two."),
        ),
        source_url="https://www.royalroad.com/fiction/12345/test-story",
    )
