"""
Unit tests for per-source rate limiters
"""

import asyncio
import pytest
from ingestion.rate_limit import RateLimiter, get_rate_limiter, reset_rate_limiters
from schemas.source import RateLimitPolicy


def test_invalid_policy():
    with pytest.raises(ValueError):
        RateLimiter(rps=0)
    with pytest.raises(ValueError):
        RateLimiter(rps=1, burst=0)


def test_limiter_shared_per_source_key():
    first = get_rate_limiter("fl-test-pa", RateLimitPolicy(rps=0.5, burst=2))
    assert get_rate_limiter("fl-test-pa") is first
    assert get_rate_limiter("fl-other-pa") is not first

    reset_rate_limiters()
    assert get_rate_limiter("fl-test-pa") is not first


def test_policy_applied_on_first_use():
    limiter = get_rate_limiter("fl-test-pa", RateLimitPolicy(rps=0.5, burst=2))
    assert (limiter.rps, limiter.burst) == (0.5, 2)


@pytest.mark.asyncio
async def test_burst_goes_out_without_waiting():
    limiter = RateLimiter(rps=10, burst=3)
    for _ in range(3):
        await asyncio.wait_for(limiter.acquire(), timeout=0.2)


@pytest.mark.asyncio
async def test_context_manager_acquires():
    limiter = RateLimiter(rps=10, burst=1)
    async with limiter as acquired:
        assert acquired is limiter
