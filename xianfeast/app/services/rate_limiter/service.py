"""In-process rate limiter with IP blocking and abuse escalation.

Counters use fixed windows that are reset lazily: the first request seen
after a window's ``reset_time`` starts a fresh window. There are no
background tasks; ``cleanup()`` is invoked by the host (see
MaintenanceService) to bound memory.

Clients that keep exceeding limits are tracked as suspicious and are blocked
automatically once they reach the violation threshold. This is an advisory
heuristic against noisy clients, not a security boundary.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from xianfeast.app.core.logging import get_log_context, get_logger
from xianfeast.app.core.scheduler import (
    CallbackScheduler,
    ScheduledCall,
    TimerHeapScheduler,
)
from xianfeast.app.services.rate_limiter.identity import get_client_ip
from xianfeast.app.services.rate_limiter.models import (
    RateLimitDecision,
    RateLimitEntry,
    RateLimitRule,
    SuspiciousActivityRecord,
)

logger = get_logger(__name__)


@dataclass
class _BlockState:
    handle: Optional[ScheduledCall] = None
    blocked_until: Optional[float] = None


class RateLimiter:
    """Per-key request counters plus a blocked-IP set.

    One instance is created by the application factory and shared by every
    handler; tests build their own with a fake clock and scheduler.

    All state is guarded by a re-entrant lock, so the limiter is safe under a
    thread-pool host and against scheduler threads lifting blocks.

    Usage:
        limiter = RateLimiter()
        decision = limiter.check_rate_limit(request, RateLimitRules.AUTH)
        if not decision.allowed:
            raise RateLimitExceededError(retry_after=decision.retry_after)
    """

    DEFAULT_VIOLATION_THRESHOLD = 10
    DEFAULT_SUSPICIOUS_HORIZON = 3600.0  # 1 hour
    DEFAULT_AUTO_BLOCK_SECONDS = 3600.0  # 1 hour

    def __init__(
        self,
        violation_threshold: int = DEFAULT_VIOLATION_THRESHOLD,
        suspicious_horizon: float = DEFAULT_SUSPICIOUS_HORIZON,
        auto_block_seconds: float = DEFAULT_AUTO_BLOCK_SECONDS,
        clock: Callable[[], float] = time.time,
        scheduler: Optional[CallbackScheduler] = None,
        ip_extractor: Callable[[Any], str] = get_client_ip,
    ):
        """Initialize the rate limiter.

        Args:
            violation_threshold: Violations that trigger an automatic block
            suspicious_horizon: Seconds between violations for them to count
                as one streak; also how long idle records are retained
            auto_block_seconds: Duration of an automatic block
            clock: Source of the current time in seconds
            scheduler: Runs deferred unblocks (one shared timer thread by default)
            ip_extractor: Resolves the client IP of a request
        """
        if violation_threshold < 1:
            raise ValueError("violation_threshold must be at least 1")
        if suspicious_horizon <= 0 or auto_block_seconds <= 0:
            raise ValueError("suspicious_horizon and auto_block_seconds must be positive")

        self.violation_threshold = violation_threshold
        self.suspicious_horizon = suspicious_horizon
        self.auto_block_seconds = auto_block_seconds
        self._clock = clock
        self._scheduler = scheduler or TimerHeapScheduler()
        self._ip_extractor = ip_extractor

        self._entries: Dict[str, RateLimitEntry] = {}
        self._blocked: Dict[str, _BlockState] = {}
        self._suspicious: Dict[str, SuspiciousActivityRecord] = {}

        self._checks = 0
        self._rejections = 0
        self._auto_blocks = 0

        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, app_settings: Any = None, **kwargs: Any) -> "RateLimiter":
        """Build a limiter using the escalation values from settings."""
        if app_settings is None:
            from xianfeast.app.core.config import settings as app_settings

        return cls(
            violation_threshold=app_settings.suspicious_violation_threshold,
            suspicious_horizon=app_settings.suspicious_horizon_seconds,
            auto_block_seconds=app_settings.auto_block_seconds,
            **kwargs,
        )

    def client_ip(self, request: Any) -> str:
        """Client address as this limiter sees it (used for blocking)."""
        return self._ip_extractor(request)

    def check_rate_limit(self, request: Any, rule: RateLimitRule) -> RateLimitDecision:
        """Count ``request`` against ``rule`` and decide whether it may proceed.

        Requests from a blocked IP are rejected without touching any counter.
        Otherwise the request is counted in the window of
        ``rule.key_generator(request)``; once the count exceeds
        ``rule.max_requests`` the request is rejected, a violation is recorded
        for the client IP and ``rule.on_limit_reached`` is invoked.

        Args:
            request: Request object; must allow IP extraction
            rule: Window and cap to apply

        Returns:
            RateLimitDecision with allowed status and metadata
        """
        ip = self.client_ip(request)
        auto_blocked = False

        with self._lock:
            now = self._clock()
            self._checks += 1

            if ip in self._blocked:
                self._rejections += 1
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    reset_time=now + rule.window_seconds,
                    limit=rule.max_requests,
                    retry_after=max(1, math.ceil(rule.window_seconds)),
                    blocked=True,
                )

            key = rule.key_generator(request) if rule.key_generator else ip

            entry = self._entries.get(key)
            if entry is None or now > entry.reset_time:
                entry = RateLimitEntry(
                    count=0,
                    window_start=now,
                    reset_time=now + rule.window_seconds,
                )
                self._entries[key] = entry

            entry.count += 1
            allowed = entry.count <= rule.max_requests
            remaining = max(0, rule.max_requests - entry.count)

            retry_after = None
            if not allowed:
                self._rejections += 1
                retry_after = max(1, math.ceil(entry.reset_time - now))
                auto_blocked = self._record_violation(ip, now)

            decision = RateLimitDecision(
                allowed=allowed,
                remaining=remaining,
                reset_time=entry.reset_time,
                limit=rule.max_requests,
                retry_after=retry_after,
                key=key,
            )

        if not allowed:
            logger.debug(
                f"Rate limit exceeded for rule '{rule.name or 'custom'}'",
                extra=get_log_context(client_ip=ip, rate_limit_key=key),
            )
            if auto_blocked:
                logger.warning(
                    f"Auto-blocked IP {ip} for excessive rate limit violations",
                    extra=get_log_context(client_ip=ip),
                )
            if rule.on_limit_reached is not None:
                rule.on_limit_reached(request)

        return decision

    def _record_violation(self, ip: str, now: float) -> bool:
        """Update the suspicious-activity record for ``ip``.

        The gap since the previous violation is measured before ``last_seen``
        is updated. A gap shorter than the horizon extends the streak; a
        longer one restarts it at 1.

        Caller holds the lock.

        Returns:
            True if this violation triggered an automatic block
        """
        record = self._suspicious.get(ip)
        if record is None:
            record = SuspiciousActivityRecord(ip=ip, violation_count=1, last_seen=now)
            self._suspicious[ip] = record
        else:
            if now - record.last_seen < self.suspicious_horizon:
                record.violation_count += 1
            else:
                record.violation_count = 1
            record.last_seen = now

        if record.violation_count >= self.violation_threshold and ip not in self._blocked:
            self._block(ip, self.auto_block_seconds, now)
            self._auto_blocks += 1
            return True
        return False

    def block_ip(self, ip: str, duration: Optional[float] = None) -> None:
        """Deny all traffic from ``ip``.

        Args:
            ip: Client address
            duration: Seconds until the block is lifted automatically; None
                blocks until ``unblock_ip``. Re-blocking replaces any
                pending expiry.
        """
        with self._lock:
            self._block(ip, duration, self._clock())
        logger.info(
            f"Blocked IP {ip}" + (f" for {duration}s" if duration else ""),
            extra=get_log_context(client_ip=ip),
        )

    def _block(self, ip: str, duration: Optional[float], now: float) -> None:
        """Caller holds the lock."""
        previous = self._blocked.get(ip)
        if previous is not None and previous.handle is not None:
            previous.handle.cancel()

        state = _BlockState()
        if duration is not None and duration > 0:
            state.blocked_until = now + duration
            state.handle = self._scheduler.schedule(
                duration, lambda: self._expire_block(ip, state)
            )
        self._blocked[ip] = state

    def _expire_block(self, ip: str, state: _BlockState) -> None:
        """Scheduled unblock; ignored if the block was replaced or lifted."""
        with self._lock:
            if self._blocked.get(ip) is not state:
                return
            del self._blocked[ip]
        logger.info(f"Block on IP {ip} expired", extra=get_log_context(client_ip=ip))

    def unblock_ip(self, ip: str) -> bool:
        """Lift a block and forget the IP's violation history.

        Returns:
            True if the IP was blocked
        """
        with self._lock:
            state = self._blocked.pop(ip, None)
            if state is not None and state.handle is not None:
                state.handle.cancel()
            self._suspicious.pop(ip, None)
        if state is not None:
            logger.info(f"Unblocked IP {ip}", extra=get_log_context(client_ip=ip))
        return state is not None

    def is_blocked(self, ip: str) -> bool:
        with self._lock:
            return ip in self._blocked

    def blocked_until(self, ip: str) -> Optional[float]:
        """Instant an automatic unblock is scheduled for, if any."""
        with self._lock:
            state = self._blocked.get(ip)
            return state.blocked_until if state is not None else None

    def get_blocked_ips(self) -> List[str]:
        with self._lock:
            return list(self._blocked)

    def get_suspicious_ips(self) -> List[SuspiciousActivityRecord]:
        """Return copies of the violation records."""
        with self._lock:
            return [
                SuspiciousActivityRecord(r.ip, r.violation_count, r.last_seen)
                for r in self._suspicious.values()
            ]

    def reset_key(self, key: str) -> bool:
        """Forget the window for ``key`` (e.g. after a successful login)."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def cleanup(self) -> int:
        """Remove expired windows and idle suspicious-activity records.

        Returns:
            Number of windows and records removed.
        """
        with self._lock:
            now = self._clock()

            expired_keys = [
                key for key, entry in self._entries.items() if now > entry.reset_time
            ]
            for key in expired_keys:
                del self._entries[key]

            idle_ips = [
                ip for ip, record in self._suspicious.items()
                if now - record.last_seen > self.suspicious_horizon
            ]
            for ip in idle_ips:
                del self._suspicious[ip]

            return len(expired_keys) + len(idle_ips)

    def clear(self) -> None:
        """Drop all state and cancel pending unblocks."""
        with self._lock:
            for state in self._blocked.values():
                if state.handle is not None:
                    state.handle.cancel()
            self._entries.clear()
            self._blocked.clear()
            self._suspicious.clear()

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "tracked_keys": len(self._entries),
                "blocked_ips": len(self._blocked),
                "suspicious_ips": len(self._suspicious),
                "checks": self._checks,
                "rejections": self._rejections,
                "auto_blocks": self._auto_blocks,
            }
