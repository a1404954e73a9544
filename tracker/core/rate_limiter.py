"""In-memory token bucket rate limiter.

Used two ways: API routes call ``check_limit`` and get a 429 back when a key
is exhausted, and outbound API clients ``await acquire`` to wait for a token.
Instances are constructed by whoever owns the rate-limited call.
"""

import asyncio
import time
from collections import defaultdict
from typing import Dict, Tuple

from fastapi import HTTPException

from tracker.core.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Simple token bucket rate limiter.

    Tracks requests per key (e.g., opportunity or user ID) and enforces limits.
    Uses in-memory storage, so limits are per process.
    """

    def __init__(self, requests_per_minute: int = 10, burst_size: int = 15):
        """
        Initialize rate limiter.

        Args:
            requests_per_minute: Sustained rate limit
            burst_size: Maximum burst size
        """
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size
        self.refill_rate = requests_per_minute / 60.0  # tokens per second

        # Storage: key -> (tokens, last_refill_time)
        self._buckets: Dict[str, Tuple[float, float]] = defaultdict(
            lambda: (float(burst_size), time.monotonic())
        )

    def _refill_bucket(self, key: str) -> None:
        """Refill tokens in bucket based on elapsed time."""
        current_tokens, last_refill = self._buckets[key]
        now = time.monotonic()

        elapsed = now - last_refill
        tokens_to_add = elapsed * self.refill_rate

        # Cap at burst size
        new_tokens = min(self.burst_size, current_tokens + tokens_to_add)

        self._buckets[key] = (new_tokens, now)

    def try_consume(self, key: str, cost: float = 1.0) -> float:
        """
        Consume tokens if available.

        Args:
            key: Rate limit key
            cost: Token cost for this request

        Returns:
            0.0 when the tokens were consumed, otherwise the seconds to wait
            before enough tokens are available
        """
        self._refill_bucket(key)
        current_tokens, last_refill = self._buckets[key]

        if current_tokens >= cost:
            self._buckets[key] = (current_tokens - cost, last_refill)
            return 0.0

        return (cost - current_tokens) / self.refill_rate

    def check_limit(self, key: str, cost: float = 1.0) -> bool:
        """
        Check if request is allowed under rate limit.

        Args:
            key: Rate limit key (e.g., opportunity_id)
            cost: Token cost for this request (default 1.0)

        Returns:
            True if allowed

        Raises:
            HTTPException: 429 if rate limited
        """
        wait_seconds = self.try_consume(key, cost)
        if wait_seconds == 0.0:
            return True

        retry_after = int(wait_seconds) + 1
        current_tokens, _ = self._buckets[key]
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

    async def acquire(self, key: str, cost: float = 1.0) -> None:
        """Wait until ``cost`` tokens are available for ``key`` and consume them."""
        while True:
            wait_seconds = self.try_consume(key, cost)
            if wait_seconds == 0.0:
                return
            logger.debug(f"Rate limiter waiting {wait_seconds:.2f}s for key: {key}")
            await asyncio.sleep(wait_seconds)

