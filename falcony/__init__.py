__version__ = "0.1.0"

from .client import API_BASE, FalconClient
from .exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    FalconException,
    ProviderError,
)
from .models import Credentials, Page, PaginationCursor, RateLimitConfig, RateLimitState, Token
from .sync_wrapper import FalconClientSync
from .utils import AttemptPolicy

__all__ = [
    "API_BASE",
    "APIError",
    "AttemptPolicy",
    "AuthenticationError",
    "AuthorizationError",
    "ConfigurationError",
    "Credentials",
    "FalconClient",
    "FalconClientSync",
    "FalconException",
    "Page",
    "PaginationCursor",
    "ProviderError",
    "RateLimitConfig",
    "RateLimitState",
    "Token",
    "__version__",
]
