"""Standard rate limit rules for the marketplace's endpoint families.

These are configuration data; the limiter itself enforces whatever rule the
caller passes. Keys are prefixed by category so the pools never collide.
"""

from typing import Any

from xianfeast.app.services.rate_limiter.identity import get_client_ip, get_user_id
from xianfeast.app.services.rate_limiter.models import RateLimitRule


def auth_key(request: Any) -> str:
    return f"auth:{get_client_ip(request)}"


def browse_key(request: Any) -> str:
    return f"browse:{get_client_ip(request)}"


def order_key(request: Any) -> str:
    return f"order:{get_user_id(request) or get_client_ip(request)}"


def cart_key(request: Any) -> str:
    return f"cart:{get_user_id(request) or get_client_ip(request)}"


def api_key(request: Any) -> str:
    return f"api:{get_client_ip(request)}"


def admin_key(request: Any) -> str:
    return f"admin:{get_client_ip(request)}"


class RateLimitRules:
    """Preset rules selected by the HTTP layer."""

    # Authentication endpoints - 5 attempts per 15 minutes
    AUTH = RateLimitRule(
        window_seconds=15 * 60, max_requests=5, key_generator=auth_key, name="auth"
    )

    # Customer browsing - generous limits
    BROWSE = RateLimitRule(
        window_seconds=60, max_requests=100, key_generator=browse_key, name="browse"
    )

    # Order creation - per user when signed in
    ORDER = RateLimitRule(
        window_seconds=60, max_requests=10, key_generator=order_key, name="order"
    )

    # Cart operations
    CART = RateLimitRule(
        window_seconds=60, max_requests=30, key_generator=cart_key, name="cart"
    )

    # General API traffic
    API = RateLimitRule(
        window_seconds=60, max_requests=60, key_generator=api_key, name="api"
    )

    # Admin dashboards
    ADMIN = RateLimitRule(
        window_seconds=60, max_requests=20, key_generator=admin_key, name="admin"
    )

    @classmethod
    def all(cls) -> dict[str, RateLimitRule]:
        return {
            "auth": cls.AUTH,
            "browse": cls.BROWSE,
            "order": cls.ORDER,
            "cart": cls.CART,
            "api": cls.API,
            "admin": cls.ADMIN,
        }
