"""JWT verification for websocket clients.

Learn: the storefront API issues the customer's JWT at login; the relay only
needs to verify it and read the customer id (`sub`) to pick the customer's
channel. create_access_token exists for local tooling and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from orderpulse.config import settings


class TokenError(Exception):
    """Raised when token creation/verification fails."""


def create_access_token(
    customer_id: str,
    expires_minutes: int = 60,
    role: Optional[str] = None,
) -> str:
    """Create a JWT access token for a customer."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": customer_id,
        "type": "access",
        "exp": now + timedelta(minutes=expires_minutes),
        "iat": now,
    }
    if role:
        payload["role"] = role
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Verify and decode a JWT token.

    Returns the payload dict on success.
    Raises TokenError on failure.
    """
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")
    if not payload.get("sub"):
        raise TokenError("Token has no subject")
    return payload
