"""Rate limit tracking and quota-exhaustion waits.

Copyright (c) 2024 Felix Geilert
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping

from falcony.models import RateLimitConfig, RateLimitState

logger = logging.getLogger(__name__)

REMAINING_HEADER = "X-RateLimit-Remaining"
LIMIT_HEADER = "X-RateLimit-Limit"
RETRY_AFTER_HEADER = "X-RateLimit-RetryAfter"

# Waiting only until the advertised retry-after timestamp still draws 429s in
# practice; one extra minute does not.
RETRY_AFTER_PADDING_SECONDS = 60


def _header_number(headers: Mapping[str, str], name: str, cast: Callable[[str], float]):
    value = headers.get(name)
    if value is None or value == "":
        return None
    try:
        return cast(value)
    except ValueError:
        logger.warning("Non-numeric %s header: %r", name, value)
        return None


def parse_rate_limit_headers(headers: Mapping[str, str]) -> RateLimitState:
    """Build a RateLimitState from response headers."""
    return RateLimitState(
        remaining=_header_number(headers, REMAINING_HEADER, int),
        per_minute_limit=_header_number(headers, LIMIT_HEADER, int),
        retry_after=_header_number(headers, RETRY_AFTER_HEADER, float),
    )


class RateLimiter:
    """Holds the last observed quota state and waits out quota exhaustion.

    The limiter never rejects a request; it only delays the caller.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or RateLimitConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.state = RateLimitState()
        self._sleep = sleep
        self._clock = clock

    def observe(self, headers: Mapping[str, str]) -> RateLimitState:
        """Replace the current state with the one reported by ``headers``."""
        self.state = parse_rate_limit_headers(headers)
        return self.state

    def seconds_until_retry(self, state: RateLimitState, now: float) -> float:
        if state.retry_after is None:
            return 0.0
        return max(0.0, state.retry_after + RETRY_AFTER_PADDING_SECONDS - now)

    async def on_quota_exhausted(self, state: RateLimitState | None = None) -> float:
        """Suspend until it should be safe to retry after a 429.

        Returns the total number of seconds spent waiting.
        """
        if state is None:
            state = self.state
        now = self._clock()
        wait = self.seconds_until_retry(state, now)
        self.logger.info(
            "Encountered 429 response. Waiting %.1fs to retry request.",
            wait,
            extra={"unix_time_now": now, "rate_limit_state": state.to_dict(), "sleep_seconds": wait},
        )
        if wait > 0:
            await self._sleep(wait)

        slept = wait
        if state.remaining is not None and state.remaining <= self.config.reserve_limit:
            self.logger.info(
                "Rate limit remaining is at or below reserve limit. Waiting for cooldown period.",
                extra={
                    "rate_limit_state": state.to_dict(),
                    "reserve_limit": self.config.reserve_limit,
                    "cooldown_period": self.config.cooldown_period,
                },
            )
            await self._sleep(self.config.cooldown_period)
            slept += self.config.cooldown_period
        return slept
