"""Custom exceptions for the XianFeast application."""


class XianFeastException(Exception):
    """Base class for application exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Internal error"):
        self.message = message
        super().__init__(message)


class RateLimitExceededError(XianFeastException):
    """Raised when a request is rejected by the rate limiter.

    Maps to HTTP 429 Too Many Requests. ``retry_after`` is the number of
    seconds the client should wait, suitable for a ``Retry-After`` header.
    """
    status_code = 429

    def __init__(
        self,
        retry_after: int | None = None,
        reset_time: float | None = None,
        limit: int | None = None,
        detail: str | None = None,
    ):
        self.retry_after = retry_after
        self.reset_time = reset_time
        self.limit = limit
        super().__init__(detail or "Rate limit exceeded. Please try again later.")


class SecurityValidationError(XianFeastException):
    """Raised when a request fails security validation.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400

    def __init__(self, errors: list[str] | None = None):
        self.errors = list(errors or [])
        message = "Security validation failed"
        if self.errors:
            message += ": " + ", ".join(self.errors)
        super().__init__(message)


class AuthenticationError(XianFeastException):
    """Raised when admin token authentication fails.

    Maps to HTTP 401 Unauthorized.
    """
    status_code = 401

    def __init__(self, detail: str = "Invalid or missing admin token"):
        self.detail = detail
        super().__init__(detail)


class InvalidRuleError(ValueError):
    """Raised when a rate limit rule is constructed with invalid values."""
