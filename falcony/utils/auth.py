"""OAuth2 client-credentials token handling.

Copyright (c) 2024 Felix Geilert
"""

import asyncio
import logging
import time
from collections.abc import Callable

import aiohttp

from falcony.exceptions import APIError, AuthenticationError
from falcony.models import Credentials, HTTPResult, Token
from falcony.utils.retry import (
    Abort,
    AttemptContext,
    Escalate,
    Outcome,
    Retry,
    RetryEngine,
    Success,
    read_http_result,
)

TOKEN_PATH = "/oauth2/token"


def classify_token_response(result: HTTPResult, context: AttemptContext) -> Outcome:
    """Classify a token endpoint response.

    400 means the credentials are malformed and 403 that they were refused;
    neither improves with retries.
    """
    if result.ok:
        return Success(result.payload)

    args = {
        "endpoint": result.endpoint,
        "status": result.status,
        "status_text": result.reason,
        "details": {"status": result.status, "response": result.payload},
    }
    if result.status == 400:
        return Abort(APIError(**args))
    if result.status == 403:
        return Escalate(AuthenticationError(**args))
    return Retry(APIError(**args))


class Authenticator:
    """Performs the client-credentials exchange against the token endpoint."""

    def __init__(
        self,
        credentials: Credentials,
        session: Callable[[], aiohttp.ClientSession],
        engine: RetryEngine,
        token_url: str,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            credentials: Client id and secret.
            session: Returns the HTTP session to use for the exchange.
            engine: Retry engine governing the exchange.
            token_url: Absolute URL of the token endpoint.
            logger: Logger for token lifecycle events.
            clock: Unix time source.
        """
        self.credentials = credentials
        self._session = session
        self.engine = engine
        self.token_url = token_url
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock

    async def _attempt(self, _token: Token | None) -> HTTPResult:
        form = {
            "client_id": self.credentials.client_id,
            "client_secret": self.credentials.client_secret,
        }
        async with self._session().request(
            "POST", self.token_url, data=form, headers={"accept": "application/json"}
        ) as response:
            return await read_http_result(response, self.token_url)

    async def request_token(self) -> Token:
        """Exchange the credentials for a new token."""
        self.logger.info("Fetching new access token")
        payload = await self.engine.execute(self._attempt, classify_token_response, endpoint=self.token_url)

        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise AuthenticationError(
                endpoint=self.token_url, status_text="token response has no access_token", details={"response": payload}
            )
        try:
            expires_in = float(payload.get("expires_in", 0))
        except (TypeError, ValueError):
            expires_in = 0.0
        if expires_in <= 0:
            raise AuthenticationError(
                endpoint=self.token_url, status_text="token response has no usable expires_in", details={"response": payload}
            )

        expires_at = self._clock() + expires_in
        self.logger.info(
            "Fetched new access token",
            extra={"expires_at": expires_at, "expires_in": expires_in},
        )
        return Token(access_token=payload["access_token"], expires_at=expires_at)


class TokenStore:
    """Holds the current token and refreshes it through the Authenticator.

    A lock serializes refreshes so concurrent callers on one instance share a
    single exchange.
    """

    def __init__(
        self,
        authenticator: Authenticator,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.authenticator = authenticator
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self._token: Token | None = None
        self._lock = asyncio.Lock()

    @property
    def token(self) -> Token | None:
        return self._token

    def is_valid(self) -> bool:
        return self._token is not None and self._token.is_valid(self._clock())

    async def authenticate(self) -> Token:
        """Return the held token, exchanging credentials if it is absent or expired."""
        async with self._lock:
            token = self._token
            if token is None or not token.is_valid(self._clock()):
                token = await self.authenticator.request_token()
                self._token = token
            return token

    async def refresh(self, stale: Token | None = None) -> Token:
        """Force a new exchange.

        When ``stale`` is given and the held token has already been replaced
        by a valid one, that token is returned instead.
        """
        async with self._lock:
            if stale is not None and self._token is not None and self._token != stale and self.is_valid():
                self.logger.debug("Token already refreshed by another caller")
                return self._token
            self._token = await self.authenticator.request_token()
            return self._token
