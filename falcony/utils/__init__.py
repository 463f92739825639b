"""Utility modules for the Falcon API client.

Copyright (c) 2024 Felix Geilert
"""

from .auth import Authenticator, TokenStore
from .pagination import Paginator, to_query_params
from .rate_limit import RateLimiter, parse_rate_limit_headers
from .retry import (
    AttemptPolicy,
    RetryEngine,
    calculate_backoff_delay,
    classify_resource_response,
    read_http_result,
)

__all__ = [
    "AttemptPolicy",
    "Authenticator",
    "Paginator",
    "RateLimiter",
    "RetryEngine",
    "TokenStore",
    "calculate_backoff_delay",
    "classify_resource_response",
    "parse_rate_limit_headers",
    "read_http_result",
    "to_query_params",
]
