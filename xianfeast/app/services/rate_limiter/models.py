"""Rate limiting data models.

This module contains dataclasses for rate limit state, rules and results.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from xianfeast.app.exceptions import InvalidRuleError


@dataclass
class RateLimitEntry:
    """Counter for one limiter key within its current window."""
    count: int
    window_start: float
    reset_time: float


@dataclass(frozen=True)
class RateLimitRule:
    """A window length, a cap, and how to derive the counter key.

    Attributes:
        window_seconds: Window length in seconds (> 0)
        max_requests: Inclusive cap per window (>= 1)
        key_generator: Maps a request to its counter key; defaults to the
            client IP when omitted
        on_limit_reached: Optional hook called with the request on rejection
        name: Label used in logs and statistics
    """
    window_seconds: float
    max_requests: int
    key_generator: Optional[Callable[[Any], str]] = None
    on_limit_reached: Optional[Callable[[Any], None]] = None
    name: str = ""

    def __post_init__(self) -> None:
        if not self.window_seconds or self.window_seconds <= 0:
            raise InvalidRuleError(
                f"window_seconds must be positive, got {self.window_seconds!r}"
            )
        if isinstance(self.max_requests, bool) or not isinstance(self.max_requests, int):
            raise InvalidRuleError(
                f"max_requests must be an integer, got {self.max_requests!r}"
            )
        if self.max_requests < 1:
            raise InvalidRuleError(
                f"max_requests must be at least 1, got {self.max_requests}"
            )


@dataclass
class RateLimitDecision:
    """Result of a rate limit check."""
    allowed: bool
    remaining: int
    reset_time: float
    limit: int
    retry_after: Optional[int] = None
    key: Optional[str] = None
    blocked: bool = False


@dataclass
class SuspiciousActivityRecord:
    """Violation history for one client IP."""
    ip: str
    violation_count: int
    last_seen: float

    def to_dict(self) -> dict:
        return {
            "ip": self.ip,
            "violation_count": self.violation_count,
            "last_seen": self.last_seen,
        }
