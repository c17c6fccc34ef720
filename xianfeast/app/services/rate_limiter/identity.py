"""Client identity helpers used to build rate limit keys.

Requests may be Starlette ``Request`` objects or any object exposing a
``headers`` mapping and optionally ``client``, ``ip``, ``state`` or
``user_id`` attributes.
"""

from typing import Any, Optional

from starlette.datastructures import Headers

UNKNOWN_CLIENT = "unknown"


def get_header(request: Any, name: str) -> Optional[str]:
    """Case-insensitive header lookup for Starlette requests and plain mappings."""
    headers = getattr(request, "headers", None)
    if not headers:
        return None
    if isinstance(headers, Headers):
        return headers.get(name)

    name = name.lower()
    return next((v for k, v in headers.items() if str(k).lower() == name), None)


def get_client_ip(request: Any) -> str:
    """Resolve the client address of a request.

    Order: first hop of ``X-Forwarded-For``, ``X-Real-IP``, the direct
    connection address, then ``"unknown"``. Unattributable clients therefore
    share a single bucket.
    """
    forwarded = get_header(request, "x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = get_header(request, "x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    client = getattr(request, "client", None)
    host = getattr(client, "host", None) if client is not None else None
    if host:
        return host

    ip = getattr(request, "ip", None)
    if ip:
        return str(ip)

    return UNKNOWN_CLIENT


def get_user_id(request: Any) -> Optional[str]:
    """Return the authenticated user id attached to the request, if any."""
    state = getattr(request, "state", None)
    user_id = getattr(state, "user_id", None) if state is not None else None
    if user_id is None:
        user_id = getattr(request, "user_id", None)
    return str(user_id) if user_id else None
