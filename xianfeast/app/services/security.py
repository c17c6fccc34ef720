"""Request screening and input sanitization for customer-facing APIs."""

import re
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from xianfeast.app.services.rate_limiter import RateLimiter, get_header


SUSPICIOUS_USER_AGENTS = [
    re.compile(p, re.IGNORECASE)
    for p in (r"bot", r"crawler", r"spider", r"scraper", r"curl", r"wget", r"python")
]

ATTACK_PATTERNS = [
    re.compile(r"\.\."),                 # Directory traversal
    re.compile(r"<script", re.I),        # XSS
    re.compile(r"union.*select", re.I),  # SQL injection
    re.compile(r"javascript:", re.I),
    re.compile(r"data:", re.I),
    re.compile(r"vbscript:", re.I),
    re.compile(r"onload=", re.I),
    re.compile(r"onerror=", re.I),
]

DANGEROUS_KEYS = frozenset(
    ("__proto__", "constructor", "prototype", "eval", "function", "script")
)

_SCRIPT_TAG = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.I)
_JS_PROTOCOL = re.compile(r"javascript:", re.I)
_EVENT_HANDLER = re.compile(r"on\w+\s*=", re.I)
_DATA_PROTOCOL = re.compile(r"data:", re.I)


@dataclass
class SecurityConfig:
    enable_rate_limit: bool = True
    enable_ip_blocking: bool = True
    enable_user_agent_validation: bool = True
    max_request_size: int = 10 * 1024 * 1024  # 10MB
    allowed_origins: list[str] = field(
        default_factory=lambda: [
            "http://localhost:3000",
            "https://xianfeast.com",
            "https://*.xianfeast.com",
        ]
    )

    @classmethod
    def from_settings(cls, app_settings: Any = None) -> "SecurityConfig":
        if app_settings is None:
            from xianfeast.app.core.config import settings as app_settings

        return cls(
            enable_rate_limit=app_settings.rate_limit_enabled,
            enable_ip_blocking=app_settings.security_enable_ip_blocking,
            enable_user_agent_validation=app_settings.security_enable_user_agent_validation,
            max_request_size=app_settings.security_max_request_size,
            allowed_origins=list(app_settings.security_allowed_origins),
        )


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class SecurityValidator:
    """Screens requests before they reach a handler.

    Errors make the request invalid; warnings are informational.
    """

    def __init__(self, rate_limiter: RateLimiter, config: Optional[SecurityConfig] = None):
        self._rate_limiter = rate_limiter
        self._config = config or SecurityConfig()

    def validate_request(self, request: Any) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []
        config = self._config

        if config.enable_ip_blocking:
            if self._rate_limiter.is_blocked(self._rate_limiter.client_ip(request)):
                errors.append("IP address is blocked")

        if config.enable_user_agent_validation:
            user_agent = get_header(request, "user-agent")
            if not user_agent or self.is_suspicious_user_agent(user_agent):
                warnings.append("Suspicious or missing User-Agent")

        try:
            content_length = int(get_header(request, "content-length") or 0)
        except ValueError:
            content_length = 0
        if content_length > config.max_request_size:
            errors.append("Request size exceeds limit")

        origin = get_header(request, "origin")
        if origin and not self.is_allowed_origin(origin):
            warnings.append("Request from non-whitelisted origin")

        if self.contains_attack_patterns(str(getattr(request, "url", "") or "")):
            errors.append("Request contains suspicious patterns")

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    def update_config(self, **changes: Any) -> SecurityConfig:
        self._config = replace(self._config, **changes)
        return self.get_config()

    def get_config(self) -> SecurityConfig:
        """Return a copy of the current configuration."""
        return replace(self._config, allowed_origins=list(self._config.allowed_origins))

    @staticmethod
    def is_suspicious_user_agent(user_agent: str) -> bool:
        if not user_agent.strip():
            return True
        return any(p.search(user_agent) for p in SUSPICIOUS_USER_AGENTS)

    def is_allowed_origin(self, origin: str) -> bool:
        for allowed in self._config.allowed_origins:
            if "*" in allowed:
                pattern = ".*".join(re.escape(part) for part in allowed.split("*"))
                if re.fullmatch(pattern, origin):
                    return True
            elif allowed == origin:
                return True
        return False

    @staticmethod
    def contains_attack_patterns(url: str) -> bool:
        return any(p.search(url) for p in ATTACK_PATTERNS)


class RequestSanitizer:
    """Strips dangerous keys and markup from decoded JSON bodies."""

    @classmethod
    def sanitize_body(cls, body: Any) -> Any:
        if isinstance(body, list):
            return [cls.sanitize_body(item) for item in body]
        if not isinstance(body, dict):
            return cls.sanitize_string(body) if isinstance(body, str) else body

        sanitized = {}
        for key, value in body.items():
            if cls.is_dangerous_key(key):
                continue
            sanitized[key] = cls.sanitize_body(value)
        return sanitized

    @staticmethod
    def sanitize_string(value: str) -> str:
        value = _SCRIPT_TAG.sub("", value)
        value = _JS_PROTOCOL.sub("", value)
        value = _EVENT_HANDLER.sub("", value)
        value = _DATA_PROTOCOL.sub("", value)
        return value.strip()

    @staticmethod
    def is_dangerous_key(key: Any) -> bool:
        return str(key).lower() in DANGEROUS_KEYS
