"""Synchronous wrapper for the async Falcon API client.

This module provides a blocking interface to FalconClient for non-async
code. Each call opens its own session; the token and rate limit state live
on the wrapped client and carry over between calls.

Copyright (c) 2024 Felix Geilert
"""

import asyncio
import contextlib
import functools
import logging
from collections.abc import Callable
from typing import Any

from .client import FalconClient
from .models import Credentials, RateLimitConfig, RateLimitState, Token
from .utils import AttemptPolicy
from .utils.pagination import PageHandler, QueryParams


def run_async(coro):
    """Run an async coroutine in a sync context."""
    loop = None
    with contextlib.suppress(RuntimeError):
        loop = asyncio.get_running_loop()

    if loop is not None:
        coro.close()
        raise RuntimeError("Cannot use sync wrapper from within an async context. Use FalconClient directly instead.")

    return asyncio.run(coro)


def async_to_sync(method: Callable) -> Callable:
    """Decorator to convert async methods to sync."""

    @functools.wraps(method)
    def wrapper(*args, **kwargs):
        coro = method(*args, **kwargs)
        return run_async(coro)

    return wrapper


class FalconClientSync:
    """Synchronous wrapper for FalconClient."""

    def __init__(
        self,
        credentials: Credentials,
        logger: logging.Logger | None = None,
        attempt_policy: AttemptPolicy | None = None,
        rate_limit_config: RateLimitConfig | None = None,
        **kwargs: Any,
    ):
        self._async_client = FalconClient(
            credentials=credentials,
            logger=logger,
            attempt_policy=attempt_policy,
            rate_limit_config=rate_limit_config,
            **kwargs,
        )

    @classmethod
    def from_config(cls, config_path: str = "config.json", logger: logging.Logger | None = None) -> "FalconClientSync":
        """Create client from a JSON configuration file."""
        instance = cls.__new__(cls)
        instance._async_client = FalconClient.from_config(config_path, logger=logger)
        return instance

    @property
    def token(self) -> Token | None:
        """Get current token information."""
        return self._async_client.token

    @property
    def rate_limit_state(self) -> RateLimitState:
        return self._async_client.rate_limit_state

    async def _call(self, name: str, *args, **kwargs):
        async with self._async_client as client:
            return await getattr(client, name)(*args, **kwargs)

    @async_to_sync
    async def authenticate(self) -> Token:
        """Return a valid token, fetching a new one when needed."""
        return await self._call("authenticate")

    @async_to_sync
    async def paginate_resources(
        self, resource_path: str, callback: PageHandler, query: QueryParams | None = None
    ) -> int:
        """Iterate a paginated collection."""
        return await self._call("paginate_resources", resource_path, callback, query)

    @async_to_sync
    async def fetch_devices(self, ids: list[str]) -> list[dict[str, Any]]:
        """Fetch device details for a batch of device ids."""
        return await self._call("fetch_devices", ids)

    @async_to_sync
    async def iterate_devices(self, callback: PageHandler, query: QueryParams | None = None) -> int:
        """Iterate detected devices with full details."""
        return await self._call("iterate_devices", callback, query)

    @async_to_sync
    async def iterate_vulnerabilities(self, callback: PageHandler, query: QueryParams | None = None) -> int:
        """Iterate known device vulnerabilities."""
        return await self._call("iterate_vulnerabilities", callback, query)

    @async_to_sync
    async def iterate_prevention_policies(self, callback: PageHandler) -> int:
        """Iterate prevention policies."""
        return await self._call("iterate_prevention_policies", callback)

    @async_to_sync
    async def iterate_prevention_policy_member_ids(self, callback: PageHandler, policy_id: str) -> int:
        """Iterate the device ids that are members of a prevention policy."""
        return await self._call("iterate_prevention_policy_member_ids", callback, policy_id)
