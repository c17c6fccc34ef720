"""Rate limiting for the HTTP layer.

Two ways to apply a RateLimitRule:

- ``RateLimitMiddleware`` applies one default rule to every request.
- ``rate_limit(rule)`` / ``with_security(...)`` are FastAPI dependencies for
  per-route rules (authentication, ordering, cart, ...).

Both use the RateLimiter stored on ``app.state.rate_limiter``.
"""

import json
from typing import Any, Callable, Iterable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from xianfeast.app.core.logging import get_logger
from xianfeast.app.exceptions import RateLimitExceededError, SecurityValidationError
from xianfeast.app.services.rate_limiter import RateLimitDecision, RateLimiter, RateLimitRule
from xianfeast.app.services.security import RequestSanitizer, SecurityValidator

logger = get_logger(__name__)


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(int(decision.reset_time)),
    }
    if decision.retry_after is not None:
        headers["Retry-After"] = str(decision.retry_after)
    return headers


def enforce_rate_limit(request: Request, rule: RateLimitRule) -> RateLimitDecision:
    """Check ``rule`` and raise RateLimitExceededError when rejected.

    The decision is stored on ``request.state.rate_limit``.
    """
    decision = get_rate_limiter(request).check_rate_limit(request, rule)
    request.state.rate_limit = decision
    if not decision.allowed:
        raise RateLimitExceededError(
            retry_after=decision.retry_after,
            reset_time=decision.reset_time,
            limit=decision.limit,
        )
    return decision


def rate_limit(rule: RateLimitRule) -> Callable[[Request], RateLimitDecision]:
    """Build a dependency enforcing ``rule``.

    Usage:
        @router.post("/auth/login", dependencies=[Depends(rate_limit(RateLimitRules.AUTH))])
    """

    def dependency(request: Request) -> RateLimitDecision:
        return enforce_rate_limit(request, rule)

    return dependency


def with_security(
    rule: Optional[RateLimitRule] = None,
    validate_request: bool = True,
    sanitize_body: bool = False,
) -> Callable[[Request], Any]:
    """Build a dependency combining rate limiting, screening and sanitization.

    Steps run in order and stop at the first failure: the rate limit
    (HTTP 429), request validation (HTTP 400), then sanitization of a JSON
    body into ``request.state.sanitized_body``. The rate limit step is
    skipped while the validator's ``enable_rate_limit`` is off.
    """

    async def dependency(request: Request) -> dict:
        results: dict[str, Any] = {"rate_limit": None, "validation": None, "sanitized_body": None}
        validator: SecurityValidator = request.app.state.security_validator

        if rule is not None and validator.get_config().enable_rate_limit:
            results["rate_limit"] = enforce_rate_limit(request, rule)

        if validate_request:
            validation = validator.validate_request(request)
            results["validation"] = validation
            if not validation.valid:
                raise SecurityValidationError(validation.errors)
            if validation.warnings:
                logger.debug(f"Request warnings: {', '.join(validation.warnings)}")

        if sanitize_body:
            raw = await request.body()
            if raw:
                try:
                    body = json.loads(raw)
                except (json.JSONDecodeError, UnicodeDecodeError) as e:
                    raise SecurityValidationError(["Request body is not valid JSON"]) from e
                results["sanitized_body"] = RequestSanitizer.sanitize_body(body)
            request.state.sanitized_body = results["sanitized_body"]

        return results

    return dependency


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce a default rate limit on every request.

    Rejections are answered directly with a 429 JSON response; allowed
    responses carry ``X-RateLimit-*`` headers.
    """

    def __init__(
        self,
        app,
        rule: RateLimitRule,
        exempt_paths: Iterable[str] = ("/health",),
        enabled: bool = True,
    ):
        super().__init__(app)
        self.rule = rule
        self.exempt_paths = frozenset(exempt_paths)
        self.enabled = enabled

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if not self.enabled or request.url.path in self.exempt_paths:
            return await call_next(request)

        decision = get_rate_limiter(request).check_rate_limit(request, self.rule)

        if not decision.allowed:
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": "Rate limit exceeded. Please try again later.",
                    "retry_after": decision.retry_after,
                },
                headers=rate_limit_headers(decision),
            )

        response = await call_next(request)
        response.headers.update(rate_limit_headers(decision))
        return response
