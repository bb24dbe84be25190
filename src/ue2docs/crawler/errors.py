from typing import Optional


class CrawlError(Exception):
    pass


class InvalidURL(CrawlError, ValueError):
    def __init__(self, url, reason: str = "invalid URL"):
        super().__init__(f"{reason}: {url!r}")
        self.url = url
        self.reason = reason


class Cancelled(CrawlError):
    def __init__(self, url: Optional[str] = None):
        super().__init__(f"cancelled: {url}" if url else "cancelled")
        self.url = url


class FetchError(CrawlError):
    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.message = message
        self.status_code = status_code


class PermanentFetchError(FetchError):
    """4xx response; never retried."""


class TransientFetchError(FetchError):
    """5xx response, transport failure or body read failure."""


class TooManyRedirects(FetchError):
    pass


class RetriesExhausted(FetchError):
    def __init__(self, url: str, attempts: int, last_error: FetchError):
        super().__init__(
            url,
            f"failed after {attempts} attempts: {last_error.message}",
            getattr(last_error, "status_code", None),
        )
        self.attempts = attempts
        self.last_error = last_error
