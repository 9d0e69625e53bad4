"""
Security Module
===============

Authentication and security utilities including:
- Identity-provider session token verification (JWT)
- Shared-secret checks for inbound webhooks
"""

import hmac
import logging
from typing import Any, Optional

from jose import JWTError, jwt

from affirm.config import settings

logger = logging.getLogger(__name__)


def decode_identity_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and validate a session token issued by the identity provider.

    Args:
        token: JWT token string

    Returns:
        Decoded payload if valid, None otherwise
    """
    if not settings.AUTH_JWT_KEY:
        logger.error("AUTH_JWT_KEY is not configured; rejecting token")
        return None

    options = {"verify_aud": settings.AUTH_JWT_AUDIENCE is not None}
    try:
        payload = jwt.decode(
            token,
            settings.AUTH_JWT_KEY,
            algorithms=[settings.AUTH_JWT_ALGORITHM],
            audience=settings.AUTH_JWT_AUDIENCE,
            issuer=settings.AUTH_JWT_ISSUER,
            options=options,
        )
        return payload
    except JWTError:
        return None


def normalize_auth_header(value: Optional[str]) -> str:
    """Strip an optional ``Bearer `` prefix from an Authorization header."""
    if not value:
        return ""
    value = value.strip()
    if value[:7].lower() == "bearer ":
        return value[7:].strip()
    return value


def secrets_match(provided: str, expected: str) -> bool:
    """Constant-time string comparison."""
    return hmac.compare_digest(
        provided.encode("utf-8"),
        expected.encode("utf-8"),
    )
