import json
import re
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_str_list(raw: Any) -> list[str]:
    """Parse a list setting given as JSON or as a comma/space separated string."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    # Prefer JSON, but tolerate plain values so a misconfigured deployment
    # does not crash at startup.
    if raw.startswith(("[", '"')):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]
        if isinstance(parsed, str):
            raw = parsed.strip()

    # Deduplicate while preserving order.
    seen: set[str] = set()
    result: list[str] = []
    for part in re.split(r"[,\s]+", raw):
        if part and part not in seen:
            seen.add(part)
            result.append(part)
    return result


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Admin endpoints (Bearer token). Empty disables the admin API.
    admin_token: str = ""

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Global rate limiting (applied by RateLimitMiddleware)
    rate_limit_enabled: bool = True
    rate_limit_requests_per_window: int = 60
    rate_limit_window_seconds: float = 60.0
    rate_limit_exempt_paths: Annotated[list[str], NoDecode] = ["/health"]

    # Suspicious activity escalation
    suspicious_violation_threshold: int = 10
    suspicious_horizon_seconds: float = 3600.0  # 1 hour
    auto_block_seconds: float = 3600.0  # 1 hour

    # Cache instances (max entries / default TTL in seconds)
    cache_stalls_max_size: int = 500
    cache_stalls_ttl_seconds: float = 600.0
    cache_products_max_size: int = 2000
    cache_products_ttl_seconds: float = 300.0
    cache_orders_max_size: int = 1000
    cache_orders_ttl_seconds: float = 60.0
    cache_businesses_max_size: int = 200
    cache_businesses_ttl_seconds: float = 900.0
    cache_users_max_size: int = 1000
    cache_users_ttl_seconds: float = 300.0

    # Periodic cleanup of limiter windows and expired cache entries
    maintenance_enabled: bool = True
    maintenance_interval_seconds: float = 300.0  # 5 minutes
    # Reload warmed caches on every maintenance cycle (needs a CacheWarmer)
    cache_refresh_enabled: bool = True

    # Request validation
    security_max_request_size: int = 10 * 1024 * 1024  # 10MB
    security_enable_ip_blocking: bool = True
    security_enable_user_agent_validation: bool = True
    security_allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "https://xianfeast.com",
        "https://*.xianfeast.com",
    ]

    @field_validator("rate_limit_exempt_paths", "security_allowed_origins", mode="before")
    @classmethod
    def decode_str_list(cls, v: Any) -> list[str]:
        return _parse_str_list(v)

    @field_validator("admin_token", mode="before")
    @classmethod
    def strip_admin_token(cls, v: Any) -> Any:
        """Normalize accidental whitespace/newline from env/secret stores."""
        return v.strip() if isinstance(v, str) else v

    @field_validator(
        "rate_limit_requests_per_window",
        "suspicious_violation_threshold",
        "cache_stalls_max_size",
        "cache_products_max_size",
        "cache_orders_max_size",
        "cache_businesses_max_size",
        "cache_users_max_size",
        "security_max_request_size",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate count-like values are at least 1."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator(
        "rate_limit_window_seconds",
        "suspicious_horizon_seconds",
        "auto_block_seconds",
        "cache_stalls_ttl_seconds",
        "cache_products_ttl_seconds",
        "cache_orders_ttl_seconds",
        "cache_businesses_ttl_seconds",
        "cache_users_ttl_seconds",
    )
    @classmethod
    def validate_positive_duration(cls, v: float) -> float:
        """Validate durations are positive."""
        if v <= 0:
            raise ValueError("durations must be positive")
        return v

    @field_validator("maintenance_interval_seconds")
    @classmethod
    def validate_maintenance_interval(cls, v: float) -> float:
        """Validate maintenance interval is reasonable."""
        if v < 1:
            raise ValueError("maintenance_interval_seconds should be at least 1 second")
        if v > 86400:
            raise ValueError("maintenance_interval_seconds should not exceed 1 day")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
