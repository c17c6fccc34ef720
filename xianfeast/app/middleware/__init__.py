"""Middleware package for XianFeast."""

from xianfeast.app.middleware.auth import require_admin
from xianfeast.app.middleware.rate_limit import (
    RateLimitMiddleware,
    enforce_rate_limit,
    rate_limit,
    with_security,
)
from xianfeast.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "require_admin",
    "RateLimitMiddleware",
    "enforce_rate_limit",
    "rate_limit",
    "with_security",
    "RequestIdMiddleware",
    "get_request_id",
]
