"""Shared fixtures: a scripted stand-in for aiohttp.ClientSession."""

import asyncio
from dataclasses import dataclass, field
from typing import Any
from unittest.mock import AsyncMock

import pytest
from multidict import CIMultiDict, CIMultiDictProxy

from falcony import AttemptPolicy, Credentials, FalconClient

NOW = 1_700_000_000.0
BASE_URL = "https://api.example.test"
TOKEN_URL = f"{BASE_URL}/oauth2/token"


class FakeResponse:
    """Minimal async-context-manager response."""

    def __init__(
        self,
        status: int = 200,
        body: Any = None,
        headers: dict[str, str] | None = None,
        reason: str = "",
    ):
        self.status = status
        self.reason = reason or {200: "OK", 401: "Unauthorized", 403: "Forbidden", 429: "Too Many Requests"}.get(
            status, "Error"
        )
        self.headers = CIMultiDictProxy(CIMultiDict(headers or {}))
        self._body = body

    async def json(self, content_type=None):
        if isinstance(self._body, str):
            raise ValueError("not JSON")
        return self._body

    async def text(self):
        return self._body if isinstance(self._body, str) else ""

    async def __aenter__(self):
        await asyncio.sleep(0)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


def token_response(access_token: str = "token-1", expires_in: int = 1800) -> FakeResponse:
    return FakeResponse(200, {"access_token": access_token, "expires_in": expires_in, "token_type": "bearer"})


def page_response(
    resources: list[Any],
    total: int | None = None,
    offset: Any = None,
    errors: list[dict[str, Any]] | None = None,
    headers: dict[str, str] | None = None,
) -> FakeResponse:
    pagination: dict[str, Any] = {"limit": 100}
    if total is not None:
        pagination["total"] = total
    if offset is not None:
        pagination["offset"] = offset
    body: dict[str, Any] = {"meta": {"pagination": pagination}, "resources": resources}
    if errors is not None:
        body["errors"] = errors
    return FakeResponse(200, body, headers=headers)


@dataclass
class RecordedCall:
    method: str
    url: str
    kwargs: dict[str, Any]

    @property
    def params(self) -> list[tuple[str, str]]:
        return list(self.kwargs.get("params") or [])


@dataclass
class FakeSession:
    """Routes token requests and resource requests to separate scripts.

    Script entries are FakeResponse objects or exceptions to raise. When the
    token script runs out, fresh tokens are issued.
    """

    responses: list[Any] = field(default_factory=list)
    token_responses: list[Any] = field(default_factory=list)
    calls: list[RecordedCall] = field(default_factory=list)
    issued_tokens: int = 0

    def request(self, method: str, url: str, **kwargs):
        self.calls.append(RecordedCall(method, url, kwargs))
        if url == TOKEN_URL:
            if self.token_responses:
                item = self.token_responses.pop(0)
            else:
                self.issued_tokens += 1
                item = token_response(f"token-{self.issued_tokens}")
        else:
            item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    @property
    def token_calls(self) -> list[RecordedCall]:
        return [call for call in self.calls if call.url == TOKEN_URL]

    @property
    def resource_calls(self) -> list[RecordedCall]:
        return [call for call in self.calls if call.url != TOKEN_URL]


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return AsyncMock(return_value=None)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def policy():
    return AttemptPolicy(max_attempts=5, initial_delay=1, per_attempt_timeout=5, backoff_factor=2)


@pytest.fixture
def credentials():
    return Credentials(client_id="client-id", client_secret="client-secret")


@pytest.fixture
def client(credentials, session, sleep, clock, policy):
    return FalconClient(
        credentials,
        attempt_policy=policy,
        base_url=BASE_URL,
        session=session,
        sleep=sleep,
        clock=clock,
    )
