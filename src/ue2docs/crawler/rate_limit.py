import queue
import threading
from typing import Optional

from ..config import RATE_LIMIT_POLL_S
from .errors import Cancelled
from .logger import get_logger

logger = get_logger("rate_limit")


class RateLimiter:
    """Anything with a cancellable ``wait``; the fetcher calls it before every attempt."""

    def wait(self, cancel: Optional[threading.Event] = None) -> None:
        raise NotImplementedError

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass


class NullRateLimiter(RateLimiter):
    def wait(self, cancel: Optional[threading.Event] = None) -> None:
        if cancel is not None and cancel.is_set():
            raise Cancelled()


class TokenBucketRateLimiter(RateLimiter):
    """
    ``requests`` permits per ``period`` seconds.

    Tokens sit in a bounded buffer that starts full and is topped up by one
    token every ``period / requests`` seconds from a refill thread. The thread
    only runs between ``start()`` and ``stop()``.
    """

    def __init__(self, requests: int, period: float = 1.0, poll_interval: float = RATE_LIMIT_POLL_S):
        if requests <= 0:
            raise ValueError("requests must be positive")
        if period <= 0:
            raise ValueError("period must be positive")
        self.capacity = requests
        self.interval = period / requests
        self.poll_interval = poll_interval
        self._tokens: "queue.Queue[None]" = queue.Queue(maxsize=requests)
        for _ in range(requests):
            self._tokens.put_nowait(None)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lifecycle = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lifecycle:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._refill, name="rate-limit-refill", daemon=True)
            self._thread.start()
        logger.debug("refill started: capacity=%d interval=%.3fs", self.capacity, self.interval)

    def stop(self) -> None:
        with self._lifecycle:
            thread, self._thread = self._thread, None
            self._stop.set()
        if thread is not None:
            thread.join()
            logger.debug("refill stopped")

    def _refill(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self._tokens.put_nowait(None)
            except queue.Full:
                pass

    def available(self) -> int:
        return self._tokens.qsize()

    def wait(self, cancel: Optional[threading.Event] = None) -> None:
        while True:
            if cancel is not None and cancel.is_set():
                raise Cancelled()
            try:
                self._tokens.get(timeout=self.poll_interval)
                return
            except queue.Empty:
                continue

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.stop()
