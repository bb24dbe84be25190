import threading
import time

import pytest

from ue2docs.config import USER_AGENT
from ue2docs.crawler.downloader import Fetcher, FetcherConfig, RetryPolicy
from ue2docs.crawler.errors import (
    Cancelled,
    PermanentFetchError,
    RetriesExhausted,
    TooManyRedirects,
    TransientFetchError,
)
from ue2docs.crawler.filters import ResourceType
from ue2docs.crawler.rate_limit import TokenBucketRateLimiter


def make_fetcher(max_retries=2, initial_delay=0.01, max_delay=0.05, **kw):
    kw.setdefault("rate_limit_requests", 0)
    config = FetcherConfig(
        timeout=5,
        retry_policy=RetryPolicy(max_retries, initial_delay, max_delay),
        **kw,
    )
    return Fetcher(config)


@pytest.mark.parametrize("attempt, expected", [
    (1, 1.0), (2, 2.0), (3, 4.0), (4, 8.0), (5, 16.0), (6, 30.0), (10, 30.0),
])
def test_backoff_schedule(attempt, expected):
    assert RetryPolicy(3, 1.0, 30.0).delay(attempt) == expected


def test_success_result(site):
    site.add("/docs/index.html", "<html>hi</html>", content_type="text/html; charset=utf-8")
    with make_fetcher() as f:
        result = f.fetch(site.url("/docs/index.html"))
    assert result.status_code == 200
    assert result.resource_type is ResourceType.HTML
    assert result.body == b"<html>hi</html>"
    assert result.text == "<html>hi</html>"
    assert result.content_type.startswith("text/html")
    assert result.url == site.url("/docs/index.html")
    assert site.last_user_agent == USER_AGENT
    assert result.headers["content-type"] == result.headers["Content-Type"]


def test_content_type_overrides_extension(site):
    site.add("/theme.php", "body{}", content_type="text/css")
    with make_fetcher() as f:
        assert f.fetch(site.url("/theme.php")).resource_type is ResourceType.CSS


def test_persistent_500_retries_then_exhausts(site):
    site.add("/broken", "boom", status=500)
    with make_fetcher(max_retries=2) as f:
        with pytest.raises(RetriesExhausted) as info:
            f.fetch(site.url("/broken"))
    assert site.hits["/broken"] == 3
    err = info.value
    assert err.attempts == 3
    assert isinstance(err.last_error, TransientFetchError)
    assert err.__cause__ is err.last_error
    assert err.status_code == 500


def test_404_is_permanent_and_not_retried(site):
    site.add("/missing", "nope", status=404)
    with make_fetcher(max_retries=3, initial_delay=5.0, max_delay=5.0) as f:
        started = time.monotonic()
        with pytest.raises(PermanentFetchError) as info:
            f.fetch(site.url("/missing"))
    assert time.monotonic() - started < 2.0
    assert site.hits["/missing"] == 1
    assert info.value.status_code == 404


def test_recovers_after_transient_failure(site):
    site.add_sequence("/flaky", [(503, "down"), (200, "ok")])
    with make_fetcher(max_retries=2) as f:
        result = f.fetch(site.url("/flaky"))
    assert result.body == b"ok"
    assert site.hits["/flaky"] == 2


def test_connection_error_is_retried(site):
    # nothing listens on port 9 of localhost
    with make_fetcher(max_retries=1) as f:
        with pytest.raises(RetriesExhausted) as info:
            f.fetch("http://127.0.0.1:9/x")
    assert info.value.attempts == 2
    assert info.value.status_code is None


def test_redirects_are_followed(site):
    site.redirect("/old", "/new")
    site.add("/new", "fresh")
    with make_fetcher() as f:
        result = f.fetch(site.url("/old"))
    assert result.body == b"fresh"
    assert result.final_url == site.url("/new")
    assert result.url == site.url("/old")


def test_redirect_loop_fails_without_retry(site):
    site.redirect("/loop", "/loop")
    with make_fetcher(max_retries=3) as f:
        with pytest.raises(TooManyRedirects):
            f.fetch(site.url("/loop"))
    # a single attempt: the first request plus at most MAX_REDIRECTS follow-ups
    assert 1 <= site.hits["/loop"] <= 11


def test_cancel_during_backoff_short_circuits(site):
    site.add("/broken", "boom", status=500)
    cancel = threading.Event()
    with make_fetcher(max_retries=5, initial_delay=10.0, max_delay=10.0) as f:
        threading.Timer(0.2, cancel.set).start()
        started = time.monotonic()
        with pytest.raises(Cancelled):
            f.fetch(site.url("/broken"), cancel)
    assert time.monotonic() - started < 3.0
    assert site.hits["/broken"] == 1


def test_cancelled_before_start_sends_nothing(site):
    site.add("/page", "x")
    cancel = threading.Event()
    cancel.set()
    with make_fetcher() as f:
        with pytest.raises(Cancelled):
            f.fetch(site.url("/page"), cancel)
    assert site.hits["/page"] == 0


def test_cancel_during_rate_limit_wait(site):
    site.add("/page", "x")
    limiter = TokenBucketRateLimiter(1, period=60.0, poll_interval=0.01)
    limiter.wait()  # drain it
    cancel = threading.Event()
    with make_fetcher(rate_limiter=limiter) as f:
        threading.Timer(0.1, cancel.set).start()
        with pytest.raises(Cancelled):
            f.fetch(site.url("/page"), cancel)
    assert site.hits["/page"] == 0


def test_rate_limiter_is_consulted_before_every_attempt(site):
    site.add("/broken", "boom", status=502)

    class CountingLimiter(TokenBucketRateLimiter):
        calls = 0

        def wait(self, cancel=None):
            CountingLimiter.calls += 1
            super().wait(cancel)

    limiter = CountingLimiter(100, period=1.0)
    with make_fetcher(max_retries=2, rate_limiter=limiter) as f:
        with pytest.raises(RetriesExhausted):
            f.fetch(site.url("/broken"))
    assert CountingLimiter.calls == 3


def test_owned_limiter_stops_with_fetcher():
    f = Fetcher(FetcherConfig(rate_limit_requests=5))
    assert f.rate_limiter.running
    f.close()
    assert not f.rate_limiter.running
    f.close()


def test_injected_limiter_is_left_to_its_owner():
    limiter = TokenBucketRateLimiter(5, period=1.0)
    limiter.start()
    try:
        with Fetcher(FetcherConfig(rate_limiter=limiter)):
            pass
        assert limiter.running
    finally:
        limiter.stop()
