"""Rate limit subject identifiers.

Authenticated and anonymous traffic get distinct identifier namespaces so
they never share a counter. Request headers a client controls freely, such
as Authorization, never select the subject.
"""

import hashlib
from typing import Collection, Optional

from starlette.requests import Request

# 32 hex chars (128 bits) for collision resistance
_HASH_LENGTH = 32


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()[:_HASH_LENGTH]


def make_identifier(user_id: Optional[str] = None, address: Optional[str] = None) -> str:
    """Build the subject part of a rate limit key.

    The authenticated user id wins; otherwise the network address is used.
    Addresses are hashed so raw IPs never end up in counter storage.

    Examples:
        >>> make_identifier(user_id="42")
        'user:42'
        >>> make_identifier(address="10.0.0.1").startswith("ip:")
        True
    """
    if user_id:
        return f"user:{user_id}"
    return f"ip:{_digest(address or 'unknown')}"


def client_address(request: Request, trusted_proxies: Collection[str] = ()) -> str:
    """Client address of the request.

    X-Forwarded-For is honoured only when the socket peer is one of the
    trusted proxies; its first hop is then the client.
    """
    peer = request.client.host if request.client else "unknown"
    if peer in trusted_proxies:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return peer


def identifier_for_request(request: Request, trusted_proxies: Collection[str] = ()) -> str:
    """Resolve the rate limit subject for an inbound request."""
    user_id = getattr(request.state, "user_id", None)
    return make_identifier(
        user_id=str(user_id) if user_id is not None else None,
        address=client_address(request, trusted_proxies),
    )
