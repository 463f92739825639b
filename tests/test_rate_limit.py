"""Tests for rate limit tracking and quota-exhaustion waits."""

from unittest.mock import AsyncMock

import pytest
from multidict import CIMultiDict

from falcony.models import RateLimitConfig, RateLimitState
from falcony.utils.rate_limit import RateLimiter, parse_rate_limit_headers

NOW = 1_000.0


@pytest.fixture
def sleep():
    return AsyncMock(return_value=None)


@pytest.fixture
def limiter(sleep):
    return RateLimiter(RateLimitConfig(reserve_limit=30, cooldown_period=1.0), sleep=sleep, clock=lambda: NOW)


class TestParseHeaders:
    def test_reads_all_headers(self):
        state = parse_rate_limit_headers(
            CIMultiDict(
                {
                    "x-ratelimit-remaining": "12",
                    "X-RateLimit-Limit": "6000",
                    "X-RateLimit-RetryAfter": "1700000000",
                }
            )
        )

        assert state == RateLimitState(remaining=12, per_minute_limit=6000, retry_after=1_700_000_000.0)

    def test_missing_headers_are_none(self):
        assert parse_rate_limit_headers({}) == RateLimitState()

    def test_non_numeric_header_is_none(self):
        state = parse_rate_limit_headers({"X-RateLimit-Remaining": "lots"})
        assert state.remaining is None

    def test_observe_replaces_state(self, limiter):
        limiter.observe({"X-RateLimit-Remaining": "5", "X-RateLimit-RetryAfter": "10"})
        limiter.observe({"X-RateLimit-Remaining": "7"})

        assert limiter.state == RateLimitState(remaining=7)


class TestOnQuotaExhausted:
    @pytest.mark.asyncio
    async def test_waits_one_minute_past_retry_after(self, limiter, sleep):
        slept = await limiter.on_quota_exhausted(RateLimitState(remaining=100, retry_after=NOW + 15))

        sleep.assert_awaited_once_with(75.0)
        assert slept == 75.0

    @pytest.mark.asyncio
    async def test_past_retry_after_clamps_to_zero(self, limiter, sleep):
        slept = await limiter.on_quota_exhausted(RateLimitState(remaining=100, retry_after=NOW - 600))

        sleep.assert_not_awaited()
        assert slept == 0.0

    @pytest.mark.asyncio
    async def test_cooldown_when_remaining_at_reserve(self, limiter, sleep):
        await limiter.on_quota_exhausted(RateLimitState(remaining=30, retry_after=NOW))

        assert [c.args[0] for c in sleep.await_args_list] == [60.0, 1.0]

    @pytest.mark.asyncio
    async def test_cooldown_when_remaining_is_zero(self, limiter, sleep):
        slept = await limiter.on_quota_exhausted(RateLimitState(remaining=0))

        sleep.assert_awaited_once_with(1.0)
        assert slept == 1.0

    @pytest.mark.asyncio
    async def test_no_wait_without_quota_information(self, limiter, sleep):
        assert await limiter.on_quota_exhausted(RateLimitState()) == 0.0
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_defaults_to_last_observed_state(self, limiter, sleep):
        limiter.observe({"X-RateLimit-RetryAfter": str(NOW + 5), "X-RateLimit-Remaining": "1000"})

        await limiter.on_quota_exhausted()

        sleep.assert_awaited_once_with(65.0)
