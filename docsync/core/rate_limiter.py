"""Simple in-memory rate limiter for generation endpoints."""

import time
from collections import defaultdict
from functools import lru_cache
from typing import Dict, Tuple
from uuid import UUID

from fastapi import HTTPException

from docsync.core.config import get_settings
from docsync.core.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Token bucket rate limiter.

    Tracks requests per key (e.g. user id). State is per process.
    """

    def __init__(self, requests_per_minute: int = 10, burst_size: int = 15):
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size
        self.refill_rate = requests_per_minute / 60.0  # tokens per second

        # key -> (tokens, last_refill_time)
        self._buckets: Dict[str, Tuple[float, float]] = defaultdict(
            lambda: (float(burst_size), time.time())
        )

    def _refill_bucket(self, key: str) -> None:
        current_tokens, last_refill = self._buckets[key]
        now = time.time()
        new_tokens = min(self.burst_size, current_tokens + (now - last_refill) * self.refill_rate)
        self._buckets[key] = (new_tokens, now)

    def check_limit(self, key: str, cost: float = 1.0) -> bool:
        """
        Consume ``cost`` tokens for ``key``.

        Returns:
            True if allowed

        Raises:
            HTTPException: 429 if rate limited
        """
        self._refill_bucket(key)
        current_tokens, last_refill = self._buckets[key]

        if current_tokens >= cost:
            self._buckets[key] = (current_tokens - cost, last_refill)
            return True

        retry_after = int((cost - current_tokens) / self.refill_rate) + 1
        logger.warning(
            f"Rate limit exceeded for key: {key}, "
            f"tokens: {current_tokens:.2f}/{self.burst_size}, "
            f"retry after: {retry_after}s"
        )
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)},
        )


@lru_cache(maxsize=1)
def get_chat_rate_limiter() -> RateLimiter:
    settings = get_settings()
    per_minute = settings.CHAT_RATE_LIMIT_PER_MINUTE
    return RateLimiter(requests_per_minute=per_minute, burst_size=per_minute + per_minute // 2)


def check_chat_rate_limit(user_id: UUID) -> None:
    """
    Check the per-user limit for endpoints that start a generation.

    Raises:
        HTTPException: 429 if rate limited
    """
    get_chat_rate_limiter().check_limit(f"chat:{user_id}")
