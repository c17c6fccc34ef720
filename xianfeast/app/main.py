import re
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from xianfeast.app.api.admin import router as admin_router
from xianfeast.app.core.cache import AppCaches
from xianfeast.app.core.config import Settings, settings as default_settings
from xianfeast.app.core.logging import get_logger, setup_logging
from xianfeast.app.core.scheduler import CallbackScheduler
from xianfeast.app.exceptions import (
    AuthenticationError,
    RateLimitExceededError,
    SecurityValidationError,
)
from xianfeast.app.middleware.rate_limit import RateLimitMiddleware
from xianfeast.app.middleware.request_id import RequestIdMiddleware, get_request_id
from xianfeast.app.services.cache_warmer import CacheWarmer
from xianfeast.app.services.maintenance import MaintenanceService
from xianfeast.app.services.rate_limiter import RateLimiter, RateLimitRule
from xianfeast.app.services.rate_limiter.rules import api_key
from xianfeast.app.services.security import SecurityConfig, SecurityValidator


def create_app(
    app_settings: Optional[Settings] = None,
    rate_limiter: Optional[RateLimiter] = None,
    caches: Optional[AppCaches] = None,
    scheduler: Optional[CallbackScheduler] = None,
    cache_warmer: Optional[CacheWarmer] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The limiter, caches and validator are built here and shared through
    ``app.state``; pass your own instances to control time in tests.

    Returns:
        Configured FastAPI application instance
    """
    app_settings = app_settings or default_settings

    setup_logging()
    logger = get_logger(__name__)

    rate_limiter = rate_limiter or RateLimiter.from_settings(app_settings, scheduler=scheduler)
    caches = caches or AppCaches.from_settings(app_settings)
    maintenance = MaintenanceService(
        rate_limiter,
        caches,
        interval=app_settings.maintenance_interval_seconds,
        cache_warmer=cache_warmer if app_settings.cache_refresh_enabled else None,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Warm caches and start the maintenance loop; stop it on shutdown."""
        if cache_warmer is not None:
            result = await cache_warmer.warm()
            if not result.ok:
                logger.warning(f"Cache warm-up incomplete: {result.errors}")

        if app_settings.maintenance_enabled:
            await maintenance.start()

        logger.info(
            "Application startup complete",
            extra={
                "caches": [name for name, _ in caches.items()],
                "rate_limit_enabled": app_settings.rate_limit_enabled,
                "debug_mode": app_settings.debug,
            }
        )

        yield

        await maintenance.stop()
        rate_limiter.clear()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="XianFeast API",
        description="Marketplace API with rate limiting, request screening and caching",
        version="0.1.0",
        lifespan=lifespan
    )

    app.state.settings = app_settings
    app.state.rate_limiter = rate_limiter
    app.state.caches = caches
    app.state.maintenance = maintenance
    app.state.security_validator = SecurityValidator(
        rate_limiter, SecurityConfig.from_settings(app_settings)
    )

    # Middleware order: last added = first executed
    app.add_middleware(
        RateLimitMiddleware,
        rule=RateLimitRule(
            window_seconds=app_settings.rate_limit_window_seconds,
            max_requests=app_settings.rate_limit_requests_per_window,
            key_generator=api_key,
            name="global",
        ),
        exempt_paths=app_settings.rate_limit_exempt_paths,
        enabled=app_settings.rate_limit_enabled,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=_origins_regex(app_settings.security_allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining",
            "X-RateLimit-Reset", "Retry-After",
        ],
        max_age=600,
    )

    # Outermost so rejected requests still carry an ID
    app.add_middleware(RequestIdMiddleware)

    app.include_router(admin_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check with limiter, cache and maintenance status."""
        limiter_stats = rate_limiter.get_stats()
        return {
            "status": "ok",
            "components": {
                "rate_limiter": {
                    "status": "ok",
                    "blocked_ips": limiter_stats["blocked_ips"],
                    "tracked_keys": limiter_stats["tracked_keys"],
                },
                "cache": {
                    "status": "ok",
                    "sizes": {name: len(cache) for name, cache in caches.items()},
                },
                "maintenance": {
                    "status": "ok" if maintenance.running or not app_settings.maintenance_enabled else "stopped",
                    "runs": maintenance.runs,
                },
            },
        }

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
        """Handle RateLimitExceededError and return HTTP 429 response."""
        headers = {"Retry-After": str(exc.retry_after or 60)}
        if exc.limit is not None:
            headers["X-RateLimit-Limit"] = str(exc.limit)
            headers["X-RateLimit-Remaining"] = "0"
        if exc.reset_time is not None:
            headers["X-RateLimit-Reset"] = str(int(exc.reset_time))
        return JSONResponse(
            status_code=429,
            content={
                "error": "rate_limit_exceeded",
                "message": exc.message,
                "retry_after": exc.retry_after,
            },
            headers=headers,
        )

    @app.exception_handler(SecurityValidationError)
    async def security_error_handler(request: Request, exc: SecurityValidationError) -> JSONResponse:
        """Handle SecurityValidationError and return HTTP 400 response."""
        logger.warning(
            f"Rejected request: {exc.message}",
            extra={"request_id": get_request_id(request), "path": request.url.path},
        )
        return JSONResponse(
            status_code=400,
            content={"error": "security_validation_failed", "message": exc.message, "errors": exc.errors}
        )

    @app.exception_handler(AuthenticationError)
    async def auth_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
        """Handle AuthenticationError and return HTTP 401 response."""
        return JSONResponse(
            status_code=401,
            content={"error": "authentication_failed", "message": exc.detail}
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Log unhandled exceptions server-side; never return a traceback."""
        request_id = get_request_id(request)
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            }
        )

        content = {
            "error": "internal_error",
            "message": "Internal server error",
            "request_id": request_id,
        }
        if app_settings.debug:
            content["message"] = str(exc)
            content["exception_type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)

    return app


def _origins_regex(origins: list[str]) -> Optional[str]:
    """Translate allow-list entries (``*`` wildcards allowed) into one regex."""
    if not origins:
        return None
    parts = [".*".join(re.escape(p) for p in origin.split("*")) for origin in origins]
    return "^(" + "|".join(parts) + ")$"


# Create the application instance
app = create_app()
