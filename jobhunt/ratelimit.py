"""Per-host token-bucket rate limiting shared across fetchers.

One bucket per hostname, created lazily on first use. Every fetcher that
talks to the same vendor host draws from the same bucket, so concurrent
workers cannot hammer a single API.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable
from urllib.parse import urlparse

from jobhunt.deadline import Deadline
from jobhunt.errors import DeadlineExceeded

logger = logging.getLogger(__name__)

DEFAULT_RATE = 1.0  # requests per second
DEFAULT_BURST = 2


class TokenBucket:
    """Classic token bucket: ``rate`` tokens per second, at most ``burst`` banked."""

    def __init__(
        self,
        rate: float = DEFAULT_RATE,
        burst: int = DEFAULT_BURST,
        clock: Callable[[], float] = time.monotonic,
    ):
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.burst = max(1, int(burst))
        self._clock = clock
        self._tokens = float(self.burst)
        self._updated = clock()
        self._lock = threading.Lock()

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
        self._updated = now

    def reserve(self) -> float:
        """Take a token and return how long the caller must wait before using it."""
        with self._lock:
            self._refill(self._clock())
            self._tokens -= 1.0
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.rate

    def release(self) -> None:
        """Hand back a reserved token that will not be used."""
        with self._lock:
            self._tokens = min(float(self.burst), self._tokens + 1.0)

    def wait(self, deadline: Deadline | None = None) -> None:
        """Block until a token is available.

        Raises DeadlineExceeded without consuming a token if the deadline
        ends before the token would be granted.
        """
        delay = self.reserve()
        if delay <= 0:
            return
        if deadline is not None:
            left = deadline.remaining()
            if deadline.done or (left is not None and left < delay):
                self.release()
                raise DeadlineExceeded("rate limit wait exceeds deadline")
            if not deadline.wait(delay):
                self.release()
                raise DeadlineExceeded("cancelled while waiting for rate limit")
            return
        time.sleep(delay)


class HostLimiter:
    """Registry of token buckets keyed by hostname."""

    def __init__(self, rate: float = DEFAULT_RATE, burst: int = DEFAULT_BURST):
        self.rate = rate
        self.burst = burst
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def limiter_for(self, host: str) -> TokenBucket:
        key = (host or "").strip().lower() or "_"
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = TokenBucket(self.rate, self.burst)
                self._buckets[key] = bucket
                logger.debug("Created rate limiter for host %s (%.2f/s, burst %d)",
                             key, self.rate, self.burst)
            return bucket

    def wait_url(self, url: str, deadline: Deadline | None = None) -> None:
        """Wait on the bucket for the URL's host."""
        host = urlparse(url).hostname or ""
        self.limiter_for(host).wait(deadline)

    @property
    def hosts(self) -> list[str]:
        with self._lock:
            return sorted(self._buckets)
