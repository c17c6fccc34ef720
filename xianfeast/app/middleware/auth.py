import hmac

from fastapi import Request

from xianfeast.app.exceptions import AuthenticationError


def get_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header.

    Args:
        request: The incoming request

    Returns:
        The token string if present, None otherwise
    """
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.replace("Bearer ", "", 1).strip()


def require_admin(request: Request) -> str:
    """Validate admin token for protected endpoints.

    Raises:
        AuthenticationError: if the admin API is disabled (no ADMIN_TOKEN)
            or the token is missing or invalid
    """
    expected_token = request.app.state.settings.admin_token
    if not expected_token:
        raise AuthenticationError("Admin API is disabled")

    # Always compare, even with no token, so timing does not reveal presence
    token = get_bearer_token(request) or ""
    if not hmac.compare_digest(token.encode(), expected_token.encode()):
        raise AuthenticationError()

    return "admin"
