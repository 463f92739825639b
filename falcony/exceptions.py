"""Exceptions raised by the Falcon API client.

Copyright (c) 2024 Felix Geilert
"""

from typing import Any


class FalconException(Exception):
    """Base exception for all falcony errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(FalconException):
    """Raised when the client configuration is missing or invalid."""


class ProviderError(FalconException):
    """Base for errors derived from an HTTP exchange with the provider."""

    def __init__(
        self,
        endpoint: str,
        status: int | None = None,
        status_text: str = "",
        details: dict[str, Any] | None = None,
    ):
        self.endpoint = endpoint
        self.status = status
        self.status_text = status_text
        status_label = status if status is not None else "no response"
        super().__init__(f"Provider API request failed at {endpoint}: {status_label} {status_text}".rstrip(), details)


class APIError(ProviderError):
    """A non-success response or a transport fault that could not be recovered."""


class AuthenticationError(ProviderError):
    """The credential exchange was rejected, or the API kept refusing the token."""


class AuthorizationError(ProviderError):
    """The token is valid but lacks the scope required for the resource."""
