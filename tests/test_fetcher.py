import pytest
import requests
import responses

from crawler.errors import ConfigError, NetworkError
from crawler.fetcher import Fetcher, RetryPolicy, default_backoff, is_retryable_status

URL = "https://www.royalroad.com/fiction/1/x"


def make_fetcher(clock, attempts=3, backoff=(1.0, 2.0), delay=0.0):
    return Fetcher(
        user_agent="ua-test",
        timeout=5,
        delay=delay,
        retry_policy=RetryPolicy(attempts=attempts, backoff=backoff),
        clock=clock,
        sleep=clock.sleep,
    )


class TestRetryPolicy:
    def test_default_backoff_is_exponential(self):
        assert default_backoff(1) == ()
        assert default_backoff(4) == (1.0, 2.0, 4.0)

    def test_default_policy_is_consistent(self):
        policy = RetryPolicy()
        assert len(policy.backoff) == policy.attempts - 1

    @pytest.mark.parametrize("attempts,backoff", [
        (3, (1.0,)),
        (2, (1.0, 2.0, 3.0)),
        (1, (1.0,)),
    ])
    def test_mismatched_backoff_rejected(self, attempts, backoff):
        with pytest.raises(ConfigError):
            RetryPolicy(attempts=attempts, backoff=backoff)

    def test_zero_attempts_rejected(self):
        with pytest.raises(ConfigError):
            RetryPolicy(attempts=0, backoff=())

    def test_negative_backoff_rejected(self):
        with pytest.raises(ConfigError):
            RetryPolicy(attempts=2, backoff=(-1.0,))

    def test_retryable_statuses(self):
        assert is_retryable_status(500)
        assert is_retryable_status(503)
        assert is_retryable_status(429)
        assert not is_retryable_status(404)
        assert not is_retryable_status(403)


class TestFetcher:
    @responses.activate
    def test_success_returns_body_and_sends_user_agent(self, clock):
        responses.add(responses.GET, URL, body=b"hello", status=200)
        fetcher = make_fetcher(clock)

        assert fetcher.fetch(URL) == b"hello"
        assert responses.calls[0].request.headers["User-Agent"] == "ua-test"
        assert clock.sleeps == []

    @responses.activate
    @pytest.mark.parametrize("attempts,backoff", [
        (1, ()),
        (3, (1.0, 2.0)),
        (4, (0.5, 3.0, 7.0)),
    ])
    def test_permanent_transient_failure_uses_exactly_n_attempts(self, clock, attempts, backoff):
        responses.add(responses.GET, URL, status=503)
        fetcher = make_fetcher(clock, attempts=attempts, backoff=backoff)

        with pytest.raises(NetworkError) as excinfo:
            fetcher.fetch(URL)

        assert len(responses.calls) == attempts
        assert clock.sleeps == list(backoff)
        assert excinfo.value.status == 503
        assert excinfo.value.url == URL

    @responses.activate
    def test_connection_error_is_retried_and_chained(self, clock):
        responses.add(responses.GET, URL, body=requests.ConnectionError("refused"))
        fetcher = make_fetcher(clock, attempts=2, backoff=(1.0,))

        with pytest.raises(NetworkError) as excinfo:
            fetcher.fetch(URL)

        assert len(responses.calls) == 2
        assert isinstance(excinfo.value.__cause__, requests.ConnectionError)

    @responses.activate
    def test_timeout_is_retried(self, clock):
        responses.add(responses.GET, URL, body=requests.Timeout("slow"))
        responses.add(responses.GET, URL, body=b"ok")
        fetcher = make_fetcher(clock, attempts=2, backoff=(5.0,))

        assert fetcher.fetch(URL) == b"ok"
        assert clock.sleeps == [5.0]

    @responses.activate
    def test_429_then_success(self, clock):
        responses.add(responses.GET, URL, status=429)
        responses.add(responses.GET, URL, body=b"ok")
        fetcher = make_fetcher(clock)

        assert fetcher.fetch(URL) == b"ok"
        assert len(responses.calls) == 2
        assert clock.sleeps == [1.0]

    @responses.activate
    def test_each_retry_is_logged(self, clock, caplog):
        responses.add(responses.GET, URL, status=502)
        responses.add(responses.GET, URL, status=502)
        responses.add(responses.GET, URL, body=b"ok")
        fetcher = make_fetcher(clock, attempts=3, backoff=(1.0, 2.0))

        with caplog.at_level("WARNING", logger="crawler.fetcher"):
            assert fetcher.fetch(URL) == b"ok"

        retries = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Retrying")]
        assert retries == [
            f"Retrying {URL} in 1s (attempt 2/3): HTTP 502",
            f"Retrying {URL} in 2s (attempt 3/3): HTTP 502",
        ]
        assert clock.sleeps == [1.0, 2.0]

    @responses.activate
    def test_404_is_terminal(self, clock):
        responses.add(responses.GET, URL, status=404)
        fetcher = make_fetcher(clock)

        with pytest.raises(NetworkError) as excinfo:
            fetcher.fetch(URL)

        assert len(responses.calls) == 1
        assert excinfo.value.status == 404
        assert clock.sleeps == []

    @responses.activate
    def test_too_many_redirects_is_terminal(self, clock):
        responses.add(responses.GET, URL, body=requests.TooManyRedirects("loop"))
        fetcher = make_fetcher(clock)

        with pytest.raises(NetworkError) as excinfo:
            fetcher.fetch(URL)

        assert len(responses.calls) == 1
        assert isinstance(excinfo.value.__cause__, requests.TooManyRedirects)

    @responses.activate
    def test_delay_between_requests(self, clock):
        other = URL + "/2"
        responses.add(responses.GET, URL, body=b"a")
        responses.add(responses.GET, other, body=b"b")
        fetcher = make_fetcher(clock, delay=2.0)

        fetcher.fetch(URL)
        assert clock.sleeps == []
        fetcher.fetch(other)
        assert clock.sleeps == [2.0]

    @responses.activate
    def test_delay_only_waits_for_remaining_time(self, clock):
        responses.add(responses.GET, URL, body=b"a")
        fetcher = make_fetcher(clock, delay=2.0)

        fetcher.fetch(URL)
        clock.now += 1.5
        fetcher.fetch(URL)
        assert clock.sleeps == [pytest.approx(0.5)]

    @responses.activate
    def test_fetch_text_uses_declared_charset(self, clock):
        responses.add(responses.GET, URL, body="café".encode("iso-8859-1"),
                      content_type="text/html; charset=iso-8859-1")
        assert make_fetcher(clock).fetch_text(URL) == "café"

    @responses.activate
    def test_fetch_text_defaults_to_utf8(self, clock):
        responses.add(responses.GET, URL, body="café – ok".encode("utf-8"), content_type="text/html")
        assert make_fetcher(clock).fetch_text(URL) == "café – ok"

    def test_invalid_timeout_rejected(self, clock):
        with pytest.raises(ConfigError):
            Fetcher(timeout=0, clock=clock, sleep=clock.sleep)

    def test_negative_delay_rejected(self, clock):
        with pytest.raises(ConfigError):
            Fetcher(delay=-1, clock=clock, sleep=clock.sleep)
