"""Data models shared by the client and its utilities.

Resource records themselves are left as the decoded JSON dicts the API
returns; only the protocol-level shapes are modelled here.

Copyright (c) 2024 Felix Geilert
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Credentials:
    """OAuth2 client credentials."""

    client_id: str
    client_secret: str

    def __repr__(self) -> str:
        return f"Credentials(client_id={self.client_id!r}, client_secret='***')"


@dataclass(frozen=True)
class Token:
    """Bearer token with an absolute expiry in unix seconds."""

    access_token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return self.expires_at > now

    def __repr__(self) -> str:
        return f"Token(access_token='***', expires_at={self.expires_at})"


@dataclass(frozen=True)
class RateLimitState:
    """Quota information reported by the most recent response."""

    remaining: int | None = None
    per_minute_limit: int | None = None
    retry_after: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "remaining": self.remaining,
            "per_minute_limit": self.per_minute_limit,
            "retry_after": self.retry_after,
        }


@dataclass(frozen=True)
class RateLimitConfig:
    """Static rate limit tuning.

    Attributes:
        reserve_limit: Remaining-quota level at or below which an extra
            cooldown is applied after a 429.
        cooldown_period: Length of that extra cooldown in seconds.
    """

    reserve_limit: int = 30
    cooldown_period: float = 1.0


@dataclass(frozen=True)
class PaginationCursor:
    """Server-provided pagination position.

    The server is the authority on what ``offset`` and ``after`` mean; they are
    only echoed back on the next request.
    """

    limit: int | None = None
    offset: int | str | None = None
    after: int | str | None = None
    total: int | None = None

    @classmethod
    def from_meta(cls, meta: Mapping[str, Any] | None) -> "PaginationCursor":
        pagination = (meta or {}).get("pagination") or {}
        try:
            total = int(pagination["total"])
        except (KeyError, TypeError, ValueError):
            total = None
        return cls(
            limit=pagination.get("limit"),
            offset=pagination.get("offset"),
            after=pagination.get("after"),
            total=total,
        )

    @property
    def has_continuation(self) -> bool:
        return self.offset not in (None, "") or self.after not in (None, "")

    def to_params(self) -> Iterator[tuple[str, str]]:
        if isinstance(self.limit, int):
            yield "limit", str(self.limit)
        if self.offset is not None:
            yield "offset", str(self.offset)
        if self.after is not None:
            yield "after", str(self.after)


@dataclass(frozen=True)
class PageError:
    code: int | str | None
    message: str | None
    id: str | None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PageError":
        return cls(code=data.get("code"), message=data.get("message"), id=data.get("id"))

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "id": self.id}


@dataclass
class Page(Generic[T]):
    """One page of a paginated response."""

    items: list[T] = field(default_factory=list)
    errors: list[PageError] = field(default_factory=list)
    cursor: PaginationCursor = field(default_factory=PaginationCursor)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "Page[T]":
        payload = payload or {}
        return cls(
            items=list(payload.get("resources") or []),
            errors=[PageError.from_dict(err) for err in payload.get("errors") or []],
            cursor=PaginationCursor.from_meta(payload.get("meta")),
        )


@dataclass(frozen=True)
class HTTPResult:
    """Outcome of a single HTTP attempt, before classification."""

    status: int
    reason: str
    headers: Mapping[str, str]
    payload: Any
    endpoint: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300
