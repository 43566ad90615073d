"""Admission control applied before requests are decoded."""

from responder.app.middleware.rate_limit import Limiter, TokenBucket

__all__ = ["Limiter", "TokenBucket"]
