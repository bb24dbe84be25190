from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

import requests

from ..config import (
    BACKOFF_INITIAL_S,
    BACKOFF_MAX_S,
    MAX_REDIRECTS,
    RATE_LIMIT_PERIOD_S,
    RATE_LIMIT_REQUESTS,
    REQUEST_TIMEOUT_S,
    RETRY_MAX,
    USER_AGENT,
)
from .errors import (
    Cancelled,
    FetchError,
    PermanentFetchError,
    RetriesExhausted,
    TooManyRedirects,
    TransientFetchError,
)
from .filters import ResourceType, classify
from .logger import get_logger
from .rate_limit import NullRateLimiter, RateLimiter, TokenBucketRateLimiter

logger = get_logger("downloader")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = RETRY_MAX
    initial_delay: float = BACKOFF_INITIAL_S
    max_delay: float = BACKOFF_MAX_S

    def delay(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1 for the first retry)."""
        return min(self.initial_delay * (2 ** (attempt - 1)), self.max_delay)


@dataclass(frozen=True)
class FetcherConfig:
    timeout: float = REQUEST_TIMEOUT_S
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    user_agent: str = USER_AGENT
    rate_limit_requests: int = RATE_LIMIT_REQUESTS
    rate_limit_period: float = RATE_LIMIT_PERIOD_S
    # an injected limiter is owned by the caller; otherwise the Fetcher builds and stops its own
    rate_limiter: Optional[RateLimiter] = None

    @classmethod
    def default(cls) -> "FetcherConfig":
        return cls()


@dataclass
class FetchResult:
    url: str
    status_code: int
    content_type: str
    resource_type: ResourceType
    body: bytes
    headers: Mapping[str, str]
    final_url: str = ""

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class FetchState(Enum):
    ATTEMPTING = "attempting"
    AWAITING_BACKOFF = "awaiting_backoff"
    PERMANENT_FAILURE = "permanent_failure"
    SUCCESS = "success"
    CANCELLED = "cancelled"


TERMINAL_STATES = (FetchState.PERMANENT_FAILURE, FetchState.SUCCESS, FetchState.CANCELLED)


class Fetcher:
    """
    One HTTP GET per attempt, with rate limiting, retries and backoff.

    4xx fails at once, 5xx and transport errors are retried up to
    ``max_retries`` times. Cancellation wins over everything else: it is
    checked before every attempt, during the rate limiter wait and during
    the backoff sleep.
    """

    def __init__(self, config: Optional[FetcherConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or FetcherConfig.default()
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": self.config.user_agent})
        self.session.max_redirects = MAX_REDIRECTS

        self._owns_limiter = self.config.rate_limiter is None
        if self.config.rate_limiter is not None:
            self.rate_limiter = self.config.rate_limiter
        elif self.config.rate_limit_requests > 0:
            self.rate_limiter = TokenBucketRateLimiter(
                self.config.rate_limit_requests, self.config.rate_limit_period
            )
        else:
            self.rate_limiter = NullRateLimiter()
        if self._owns_limiter:
            self.rate_limiter.start()
        self._closed = False

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_limiter:
            self.rate_limiter.stop()
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def fetch(self, url: str, cancel: Optional[threading.Event] = None) -> FetchResult:
        cancel = cancel or threading.Event()
        policy = self.config.retry_policy
        state = FetchState.ATTEMPTING
        retries = 0
        result: Optional[FetchResult] = None
        failure: Optional[FetchError] = None
        last_error: Optional[TransientFetchError] = None

        while state not in TERMINAL_STATES:
            if cancel.is_set():
                state = FetchState.CANCELLED
                break

            if state is FetchState.ATTEMPTING:
                try:
                    self.rate_limiter.wait(cancel)
                    result = self._attempt(url, cancel)
                    state = FetchState.SUCCESS
                except Cancelled:
                    state = FetchState.CANCELLED
                except (PermanentFetchError, TooManyRedirects) as exc:
                    failure = exc
                    state = FetchState.PERMANENT_FAILURE
                except TransientFetchError as exc:
                    last_error = exc
                    if retries < policy.max_retries:
                        state = FetchState.AWAITING_BACKOFF
                    else:
                        failure = RetriesExhausted(url, retries + 1, exc)
                        failure.__cause__ = exc
                        state = FetchState.PERMANENT_FAILURE

            elif state is FetchState.AWAITING_BACKOFF:
                retries += 1
                delay = policy.delay(retries)
                logger.warning(
                    "Retrying %s after %s, retry %d/%d, backoff=%.2fs",
                    url, last_error.message, retries, policy.max_retries, delay,
                )
                if cancel.wait(delay):
                    state = FetchState.CANCELLED
                else:
                    state = FetchState.ATTEMPTING

        if state is FetchState.CANCELLED:
            raise Cancelled(url)
        if state is FetchState.PERMANENT_FAILURE:
            raise failure
        return result

    def _attempt(self, url: str, cancel: threading.Event) -> FetchResult:
        if cancel.is_set():
            raise Cancelled(url)
        try:
            resp = self.session.get(url, timeout=self.config.timeout, allow_redirects=True)
        except requests.TooManyRedirects as exc:
            raise TooManyRedirects(url, f"more than {MAX_REDIRECTS} redirects") from exc
        except requests.RequestException as exc:
            raise TransientFetchError(url, f"request error {type(exc).__name__}: {exc}") from exc

        # the request could not be interrupted; its result is dropped
        if cancel.is_set():
            resp.close()
            raise Cancelled(url)

        code = resp.status_code
        if 400 <= code < 500:
            raise PermanentFetchError(url, f"HTTP {code}", code)
        if not 200 <= code < 300:
            raise TransientFetchError(url, f"HTTP {code}", code)

        content_type = resp.headers.get("Content-Type", "")
        return FetchResult(
            url=url,
            status_code=code,
            content_type=content_type,
            resource_type=classify(url, content_type),
            body=resp.content,
            headers=resp.headers,
            final_url=resp.url,
        )
