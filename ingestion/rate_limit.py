"""
Per-source request throttling.

Every adapter call that touches the network goes through the limiter of its
source, so two concurrent ingestions against the same county portal share
one budget.
"""

from typing import Dict, Optional
from aiolimiter import AsyncLimiter
from schemas.source import RateLimitPolicy
import logging

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Leaky-bucket limiter built from a (rps, burst) policy.

    Up to ``burst`` requests go out immediately; after that requests are
    spaced so the sustained rate never exceeds ``rps``.
    """

    def __init__(self, rps: float, burst: int = 1):
        if rps <= 0:
            raise ValueError(f"rps must be positive, got {rps}")
        if burst < 1:
            raise ValueError(f"burst must be at least 1, got {burst}")
        self.rps = rps
        self.burst = burst
        self._limiter = AsyncLimiter(max_rate=burst, time_period=burst / rps)

    @classmethod
    def from_policy(cls, policy: RateLimitPolicy) -> "RateLimiter":
        return cls(rps=policy.rps, burst=policy.burst)

    async def acquire(self) -> None:
        """Wait until one request may be sent."""
        if not self._limiter.has_capacity():
            logger.debug(f"Rate limit reached ({self.rps} rps, burst {self.burst}), waiting")
        await self._limiter.acquire()

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None


_limiters: Dict[str, RateLimiter] = {}


def get_rate_limiter(source_key: str, policy: Optional[RateLimitPolicy] = None) -> RateLimiter:
    """
    Shared limiter for a source key, created on first use.

    The policy only matters on the first call for a key.
    """
    limiter = _limiters.get(source_key)
    if limiter is None:
        limiter = RateLimiter.from_policy(policy or RateLimitPolicy())
        _limiters[source_key] = limiter
    return limiter


def reset_rate_limiters() -> None:
    """Forget all shared limiters (tests, process reconfiguration)."""
    _limiters.clear()
