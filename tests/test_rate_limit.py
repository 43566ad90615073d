"""Tests for per-client rate limiting."""

import threading

import pytest

from responder.app.middleware.rate_limit import Limiter, TokenBucket


class TestTokenBucket:
    """Tests for the token bucket algorithm."""

    def test_burst_then_refill(self):
        bucket = TokenBucket(rate=1, burst=2, now=0.0)

        assert bucket.allow(0.0) is True
        assert bucket.allow(0.0) is True
        assert bucket.allow(0.0) is False

        assert bucket.allow(1.0) is True
        assert bucket.allow(1.0) is False

    def test_refill_capped_at_burst(self):
        bucket = TokenBucket(rate=10, burst=3, now=0.0)
        for _ in range(3):
            bucket.allow(0.0)

        # A long idle period only refills up to the burst size
        results = [bucket.allow(100.0) for _ in range(4)]
        assert results == [True, True, True, False]

    def test_partial_refill(self):
        bucket = TokenBucket(rate=2, burst=1, now=0.0)
        assert bucket.allow(0.0) is True
        assert bucket.allow(0.25) is False
        assert bucket.allow(0.5) is True

    def test_backwards_clock_does_not_refill(self):
        bucket = TokenBucket(rate=1, burst=1, now=10.0)
        assert bucket.allow(10.0) is True
        assert bucket.allow(5.0) is False
        assert bucket.tokens >= 0

    def test_non_positive_burst_normalizes_to_one(self):
        bucket = TokenBucket(rate=1, burst=0, now=0.0)
        assert bucket.burst == 1
        assert bucket.allow(0.0) is True
        assert bucket.allow(0.0) is False

    @pytest.mark.parametrize("rate", [0, -1])
    def test_disabled_rate_always_allows(self, rate):
        bucket = TokenBucket(rate=rate, burst=1, now=0.0)
        assert all(bucket.allow(0.0) for _ in range(50))

    def test_concurrent_calls_never_overspend(self):
        bucket = TokenBucket(rate=1, burst=50, now=0.0)
        allowed = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                ok = bucket.allow(0.0)
                with lock:
                    allowed.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(allowed) == 50


class TestLimiter:
    """Tests for the keyed limiter."""

    def test_same_ip_denied_within_window(self):
        limiter = Limiter(rate=1, burst=1)
        assert limiter.allow("192.0.2.1", now=0.0) is True
        assert limiter.allow("192.0.2.1", now=0.1) is False

    def test_different_keys_independent(self):
        limiter = Limiter(rate=1, burst=1)
        assert limiter.allow("192.0.2.1", now=0.0) is True
        assert limiter.allow("192.0.2.1", now=0.0) is False
        assert limiter.allow("192.0.2.2", now=0.0) is True

    def test_empty_key_always_allowed(self):
        limiter = Limiter(rate=1, burst=1)
        assert all(limiter.allow("", now=0.0) for _ in range(10))
        assert limiter.bucket_count() == 0

    def test_disabled_limiter_keeps_no_state(self):
        limiter = Limiter(rate=0, burst=1)
        assert all(limiter.allow("192.0.2.1", now=0.0) for _ in range(10))
        assert limiter.bucket_count() == 0
        assert limiter.enabled is False

    def test_buckets_created_lazily_and_kept(self):
        limiter = Limiter(rate=5, burst=2)
        limiter.allow("192.0.2.1", now=0.0)
        limiter.allow("192.0.2.2", now=0.0)
        limiter.allow("192.0.2.1", now=1.0)
        assert limiter.bucket_count() == 2

    def test_default_now_uses_monotonic_clock(self):
        limiter = Limiter(rate=1000, burst=1)
        assert limiter.allow("192.0.2.1") is True
