"""Falcon API client with async/await support.

This module provides the main client for consuming the Falcon API. It
handles OAuth2 client-credentials tokens, retries with exponential backoff,
rate limit waits and cursor pagination, streaming each page to a callback.

Copyright (c) 2024 Felix Geilert
"""

import json
import logging
import os
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import aiohttp

from . import __version__
from .exceptions import AuthenticationError, ConfigurationError
from .models import Credentials, HTTPResult, RateLimitConfig, RateLimitState, Token
from .utils import (
    AttemptPolicy,
    Authenticator,
    Paginator,
    RateLimiter,
    RetryEngine,
    TokenStore,
    classify_resource_response,
    read_http_result,
)
from .utils.auth import TOKEN_PATH
from .utils.pagination import PageHandler, QueryParams, call_handler

API_BASE = "https://api.crowdstrike.com"

DEVICES_SCROLL_PATH = "/devices/queries/devices-scroll/v1"
DEVICES_ENTITIES_PATH = "/devices/entities/devices/v1"
VULNERABILITIES_PATH = "/spotlight/combined/vulnerabilities/v1"
PREVENTION_POLICIES_PATH = "/policy/combined/prevention/v1"
PREVENTION_POLICY_MEMBERS_PATH = "/policy/queries/prevention-members/v1"


class FalconClient:
    """Async client for the Falcon API.

    One instance runs one flow at a time; build one client per concurrent
    flow. Token refreshes are serialized per instance.
    """

    def __init__(
        self,
        credentials: Credentials,
        logger: logging.Logger | None = None,
        attempt_policy: AttemptPolicy | None = None,
        rate_limit_config: RateLimitConfig | None = None,
        base_url: str = API_BASE,
        session: aiohttp.ClientSession | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the Falcon API client.

        Args:
            credentials: OAuth2 client credentials
            logger: Logger receiving request, retry and pagination events
            attempt_policy: Retry configuration, defaults to AttemptPolicy()
            rate_limit_config: Rate limit reserve and cooldown configuration
            base_url: API base URL
            session: Externally owned aiohttp session; left open on exit
            sleep: Coroutine used for backoff and rate limit waits
            clock: Unix time source
        """
        self.credentials = credentials
        self.logger = logger or logging.getLogger(__name__)
        self.attempt_policy = attempt_policy or AttemptPolicy()
        self.base_url = base_url.rstrip("/")

        self._session = session
        self._owns_session = session is None

        sleep_kwargs = {"sleep": sleep} if sleep is not None else {}
        self.rate_limiter = RateLimiter(rate_limit_config, logger=self.logger, clock=clock, **sleep_kwargs)
        self.retry_engine = RetryEngine(
            self.attempt_policy, rate_limiter=self.rate_limiter, logger=self.logger, **sleep_kwargs
        )
        self.authenticator = Authenticator(
            credentials,
            session=lambda: self.session,
            engine=self.retry_engine,
            token_url=f"{self.base_url}{TOKEN_PATH}",
            logger=self.logger,
            clock=clock,
        )
        self.token_store = TokenStore(self.authenticator, logger=self.logger, clock=clock)
        self.paginator = Paginator(self.get_json, logger=self.logger)

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get the HTTP session."""
        if self._session is None:
            raise RuntimeError("Client session not initialized. Use 'async with' context manager.")
        return self._session

    @property
    def token(self) -> Token | None:
        """The currently held token, if any."""
        return self.token_store.token

    @property
    def rate_limit_state(self) -> RateLimitState:
        """Quota state reported by the most recent response."""
        return self.rate_limiter.state

    async def __aenter__(self) -> "FalconClient":
        """Enter async context manager."""
        if self._session is None:
            headers = {
                "User-Agent": f"Falcony/{__version__} (Python Falcon API Client)",
                "Accept": "application/json",
            }
            timeout = aiohttp.ClientTimeout(total=self.attempt_policy.per_attempt_timeout)
            self._session = aiohttp.ClientSession(headers=headers, timeout=timeout)
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def authenticate(self) -> Token:
        """Return a valid token, fetching a new one when needed."""
        return await self.token_store.authenticate()

    async def get_json(self, path: str, params: list[tuple[str, str]] | None = None) -> Any:
        """
        Make an authenticated GET request with retries.

        Args:
            path: API path (relative to base URL)
            params: Query parameters; repeated keys are allowed

        Returns:
            The decoded JSON payload
        """
        url = f"{self.base_url}{path}"

        async def _attempt(token: Token | None) -> HTTPResult:
            if token is None:
                raise AuthenticationError(endpoint=url, status_text="no access token available")
            headers = {
                "accept": "application/json",
                "authorization": f"bearer {token.access_token}",
            }
            async with self.session.request("GET", url, params=params or [], headers=headers) as response:
                return await read_http_result(response, url)

        return await self.retry_engine.execute(
            _attempt, classify_resource_response, endpoint=url, token_store=self.token_store
        )

    async def paginate_resources(
        self,
        resource_path: str,
        callback: PageHandler,
        query: QueryParams | None = None,
    ) -> int:
        """
        Iterate a paginated collection, passing each page of resources to ``callback``.

        Returns:
            The number of resources seen.
        """
        return await self.paginator.run(resource_path, callback, query)

    async def fetch_devices(self, ids: list[str]) -> list[dict[str, Any]]:
        """Fetch device details for a batch of device ids."""
        response = await self.get_json(DEVICES_ENTITIES_PATH, [("ids", aid) for aid in ids])
        return list((response or {}).get("resources") or [])

    async def iterate_devices(self, callback: PageHandler, query: QueryParams | None = None) -> int:
        """
        Iterate detected devices by listing device ids, then fetching details per page.

        The scroll API has no limit on the number of records it returns, but
        its offset expires after two minutes: fetching the details plus the
        callback must fit in that window for each page.
        """

        async def hydrate(device_ids: list[str]) -> None:
            # An empty id list would produce a malformed entities request.
            if device_ids:
                await call_handler(callback, await self.fetch_devices(device_ids))

        return await self.paginate_resources(DEVICES_SCROLL_PATH, hydrate, query)

    async def iterate_vulnerabilities(self, callback: PageHandler, query: QueryParams | None = None) -> int:
        """Iterate known device vulnerabilities matching ``query``."""
        return await self.paginate_resources(VULNERABILITIES_PATH, callback, query)

    async def iterate_prevention_policies(self, callback: PageHandler) -> int:
        """Iterate prevention policies using the combined API."""
        return await self.paginate_resources(PREVENTION_POLICIES_PATH, callback)

    async def iterate_prevention_policy_member_ids(self, callback: PageHandler, policy_id: str) -> int:
        """Iterate the ids of devices that are members of a prevention policy."""
        return await self.paginate_resources(PREVENTION_POLICY_MEMBERS_PATH, callback, {"id": policy_id})

    @classmethod
    def from_config(
        cls,
        config_path: str = "config.json",
        logger: logging.Logger | None = None,
        **kwargs: Any,
    ) -> "FalconClient":
        """
        Create client from a JSON configuration file.

        The file holds ``client_id`` and ``client_secret`` and optionally
        ``base_url``, an ``attempt_policy`` object and a ``rate_limit``
        object. The settings may also be nested under a ``falcon`` key.

        Args:
            config_path: Path to config file
            logger: Logger passed to the client
            **kwargs: Extra arguments for the constructor

        Returns:
            FalconClient instance
        """
        if not os.path.exists(config_path):
            raise ConfigurationError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            try:
                config = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Config file is not valid JSON: {config_path}", details={"error": str(e)})

        return cls(logger=logger, **config_to_kwargs(config), **kwargs)


def config_to_kwargs(config: Mapping[str, Any]) -> dict[str, Any]:
    """Translate a configuration mapping into FalconClient arguments."""
    if not isinstance(config, Mapping):
        raise ConfigurationError("Config must be a JSON object")
    if "falcon" in config:
        config = config["falcon"]

    client_id = config.get("client_id")
    client_secret = config.get("client_secret")
    if not client_id or not client_secret:
        raise ConfigurationError("client_id and client_secret required in config")

    kwargs: dict[str, Any] = {"credentials": Credentials(client_id=client_id, client_secret=client_secret)}
    if config.get("base_url"):
        kwargs["base_url"] = config["base_url"]
    try:
        if config.get("attempt_policy"):
            kwargs["attempt_policy"] = AttemptPolicy(**config["attempt_policy"])
        if config.get("rate_limit"):
            kwargs["rate_limit_config"] = RateLimitConfig(**config["rate_limit"])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid client configuration: {e}")
    return kwargs
