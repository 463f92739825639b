"""Retry logic with exponential backoff for API requests.

Each attempt's result is classified into a tagged outcome (``Success``,
``Retry``, ``Abort`` or ``Escalate``) and the engine loop acts on it. Retries
may first recover state: a forced token refresh after a 401, or a rate limit
wait after a 429.

Copyright (c) 2024 Felix Geilert
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar, Union

import aiohttp

from falcony.exceptions import APIError, AuthenticationError, AuthorizationError, ProviderError
from falcony.models import HTTPResult, Token

if TYPE_CHECKING:
    from falcony.utils.auth import TokenStore
    from falcony.utils.rate_limit import RateLimiter

T = TypeVar("T")


@dataclass
class AttemptPolicy:
    """Configuration for retry behavior.

    Delays and timeouts are in seconds.
    """

    max_attempts: int = 5
    initial_delay: float = 30.0
    per_attempt_timeout: float = 180.0
    backoff_factor: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt_num: int) -> float:
        return calculate_backoff_delay(attempt_num, self)


def calculate_backoff_delay(attempt_num: int, policy: AttemptPolicy) -> float:
    """Delay to wait after the ``attempt_num``-th failed attempt (1-based)."""
    return policy.initial_delay * (policy.backoff_factor ** (attempt_num - 1))


class RetryReason(str, Enum):
    TRANSIENT = "transient"
    REAUTHENTICATE = "reauthenticate"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class Retry:
    error: ProviderError
    reason: RetryReason = RetryReason.TRANSIENT


@dataclass(frozen=True)
class Abort:
    """Stop retrying and surface the classified error."""

    error: ProviderError


@dataclass(frozen=True)
class Escalate:
    """Stop retrying and surface a stronger error than the one observed."""

    error: ProviderError


Outcome = Union[Success, Retry, Abort, Escalate]


@dataclass
class AttemptContext:
    attempt_num: int
    max_attempts: int

    @property
    def is_last(self) -> bool:
        return self.attempt_num >= self.max_attempts

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt_num": self.attempt_num,
            "max_attempts": self.max_attempts,
        }


Classifier = Callable[[HTTPResult, AttemptContext], Outcome]
AttemptFn = Callable[[Token | None], Awaitable[HTTPResult]]


def _error_args(result: HTTPResult) -> dict[str, Any]:
    return {
        "endpoint": result.endpoint,
        "status": result.status,
        "status_text": result.reason,
        "details": {"status": result.status, "response": result.payload},
    }


def classify_resource_response(result: HTTPResult, context: AttemptContext) -> Outcome:
    """Classify a resource request response."""
    if result.ok:
        if not isinstance(result.payload, Mapping):
            # Gateways sometimes answer 2xx with an HTML or empty body.
            args = _error_args(result)
            args["status_text"] = "response body is not a JSON object"
            return Retry(APIError(**args))
        return Success(result.payload)

    if result.status == 401:
        error = AuthenticationError(**_error_args(result))
        if context.attempt_num > 1:
            return Abort(error)
        return Retry(error, RetryReason.REAUTHENTICATE)
    if result.status == 403:
        return Abort(AuthorizationError(**_error_args(result)))
    if result.status == 429:
        return Retry(APIError(**_error_args(result)), RetryReason.RATE_LIMITED)
    return Retry(APIError(**_error_args(result)))


class RetryEngine:
    """Runs one logical request as a bounded sequence of attempts."""

    def __init__(
        self,
        policy: AttemptPolicy | None = None,
        rate_limiter: "RateLimiter | None" = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.policy = policy or AttemptPolicy()
        self.rate_limiter = rate_limiter
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep

    async def execute(
        self,
        attempt_fn: AttemptFn,
        classify: Classifier,
        *,
        endpoint: str,
        token_store: "TokenStore | None" = None,
    ) -> Any:
        """Execute ``attempt_fn`` until it succeeds or the failure is final.

        Args:
            attempt_fn: Coroutine function performing one HTTP attempt. It
                receives the current token, or None without a token store.
            classify: Maps an attempt's result to an outcome.
            endpoint: Request target, used for logging and transport errors.
            token_store: Supplies a valid token before every attempt and is
                refreshed when the classifier asks to reauthenticate.

        Returns:
            The value carried by the ``Success`` outcome.

        Raises:
            ProviderError subclasses: when aborted, escalated or exhausted.
        """
        context = AttemptContext(attempt_num=0, max_attempts=self.policy.max_attempts)

        while True:
            context.attempt_num += 1
            token = await token_store.authenticate() if token_store is not None else None

            self.logger.debug("Requesting %s", endpoint, extra={"endpoint": endpoint, "attempt": context.to_dict()})
            try:
                result = await asyncio.wait_for(attempt_fn(token), timeout=self.policy.per_attempt_timeout)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                error = APIError(endpoint=endpoint, status=None, status_text=str(exc) or type(exc).__name__)
                error.__cause__ = exc
                outcome: Outcome = Retry(error)
            else:
                if self.rate_limiter is not None:
                    self.rate_limiter.observe(result.headers)
                outcome = classify(result, context)

            if isinstance(outcome, Success):
                return outcome.value

            if isinstance(outcome, (Abort, Escalate)):
                self.logger.error(
                    "Request to %s failed with a non-retryable error: %s",
                    endpoint,
                    outcome.error,
                    extra={"endpoint": endpoint, "attempt": context.to_dict(), "outcome": type(outcome).__name__},
                )
                raise outcome.error

            if context.is_last:
                self.logger.error(
                    "Exhausted %d attempts requesting %s",
                    self.policy.max_attempts,
                    endpoint,
                    extra={"endpoint": endpoint, "attempt": context.to_dict()},
                )
                raise outcome.error

            await self._recover(outcome, token_store, token)
            delay = self.policy.delay_for(context.attempt_num)
            self.logger.warning(
                "Hit a possibly recoverable error when requesting %s (%s). Waiting %.1fs before trying again.",
                endpoint,
                outcome.reason.value,
                delay,
                extra={"endpoint": endpoint, "attempt": context.to_dict(), "error": str(outcome.error)},
            )
            await self._sleep(delay)

    async def _recover(
        self,
        outcome: Retry,
        token_store: "TokenStore | None",
        token: Token | None,
    ) -> None:
        if outcome.reason is RetryReason.REAUTHENTICATE and token_store is not None:
            await token_store.refresh(stale=token)
        elif outcome.reason is RetryReason.RATE_LIMITED and self.rate_limiter is not None:
            await self.rate_limiter.on_quota_exhausted()


async def read_http_result(response: aiohttp.ClientResponse, endpoint: str) -> HTTPResult:
    """Snapshot an aiohttp response into an HTTPResult.

    Bodies that are not JSON are kept as text so error details survive.
    """
    try:
        payload = await response.json(content_type=None)
    except (aiohttp.ContentTypeError, ValueError):
        payload = await response.text()
    return HTTPResult(
        status=response.status,
        reason=response.reason or "",
        headers=response.headers,
        payload=payload,
        endpoint=endpoint,
    )
