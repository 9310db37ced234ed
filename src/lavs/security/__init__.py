"""Policy enforcement: permissions, environment filtering and rate limiting."""

from lavs.security.environment import build_environment, filter_sensitive_vars
from lavs.security.permissions import DEFAULT_TIMEOUT_MS, PermissionChecker
from lavs.security.rate_limiter import RateLimiter, RateLimitResult, rate_limit_key

__all__ = [
    "DEFAULT_TIMEOUT_MS",
    "PermissionChecker",
    "RateLimitResult",
    "RateLimiter",
    "build_environment",
    "filter_sensitive_vars",
    "rate_limit_key",
]
