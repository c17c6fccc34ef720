"""Rate limiter package.

- models.py: Rules, decisions and per-key state
- identity.py: Client IP / user id extraction
- rules.py: Preset rules per endpoint family
- service.py: The RateLimiter itself
"""

from xianfeast.app.services.rate_limiter.identity import (
    UNKNOWN_CLIENT,
    get_header,
    get_client_ip,
    get_user_id,
)
from xianfeast.app.services.rate_limiter.models import (
    RateLimitDecision,
    RateLimitEntry,
    RateLimitRule,
    SuspiciousActivityRecord,
)
from xianfeast.app.services.rate_limiter.rules import RateLimitRules
from xianfeast.app.services.rate_limiter.service import RateLimiter

__all__ = [
    "UNKNOWN_CLIENT",
    "get_header",
    "get_client_ip",
    "get_user_id",
    "RateLimitDecision",
    "RateLimitEntry",
    "RateLimitRule",
    "SuspiciousActivityRecord",
    "RateLimitRules",
    "RateLimiter",
]
