"""Per-client admission control for incoming requests.

A token bucket is kept per client key (normally the source IP). Buckets are
created on first sight of a key and are never evicted.

Time values are float seconds from a monotonic source such as
``time.monotonic()``; only differences between them matter.
"""

import threading
import time
from typing import Dict, Optional


class TokenBucket:
    """Token bucket for a single client.

    Attributes:
        rate: Tokens added per second (<= 0 disables limiting)
        burst: Maximum number of tokens held
        tokens: Tokens currently available
        last_update: Time of the last observation
    """

    def __init__(self, rate: float, burst: int, now: Optional[float] = None):
        self.rate = rate if rate > 0 else 0.0
        self.burst = float(burst if burst > 0 else 1)
        self.tokens = self.burst
        self.last_update = now if now is not None else time.monotonic()
        self._lock = threading.Lock()

    def allow(self, now: float) -> bool:
        """Consume one token if available.

        Args:
            now: Current monotonic time in seconds

        Returns:
            True if the request is admitted
        """
        with self._lock:
            if self.rate <= 0:
                return True

            # Tolerate clocks that step backwards
            elapsed = max(0.0, now - self.last_update)
            self.last_update = now
            self.tokens = min(self.burst, self.tokens + elapsed * self.rate)

            if self.tokens < 1:
                return False
            self.tokens -= 1
            return True


class Limiter:
    """Keyed token-bucket limiter.

    An empty key is always admitted; it stands for a client whose address
    could not be determined.
    """

    def __init__(self, rate: float, burst: int):
        """Initialize limiter.

        Args:
            rate: Requests per second per key (<= 0 disables limiting)
            burst: Bucket capacity per key
        """
        self.rate = rate
        self.burst = burst
        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.rate > 0

    def allow(self, key: str, now: Optional[float] = None) -> bool:
        """Check whether a request from ``key`` is admitted.

        Args:
            key: Client key, normally the source IP
            now: Current monotonic time (defaults to ``time.monotonic()``)
        """
        if not self.enabled or not key:
            return True
        if now is None:
            now = time.monotonic()

        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = TokenBucket(self.rate, self.burst, now=now)
                self._buckets[key] = bucket

        return bucket.allow(now)

    def bucket_count(self) -> int:
        """Number of client keys currently tracked."""
        with self._lock:
            return len(self._buckets)
