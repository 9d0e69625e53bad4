"""
Common Dependencies
===================

Shared dependencies used across the application.

The caller's identity is always the ``sub`` claim of a verified
identity-provider token; it is never read from request bodies or params.
"""

import logging
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from affirm.config import settings
from affirm.core.errors import AuthenticationError, ErrorCodes
from affirm.core.security import decode_identity_token
from affirm.db.session import get_db

logger = logging.getLogger(__name__)

# Database session dependency
DBSession = Annotated[AsyncSession, Depends(get_db)]

# Security scheme for identity-provider bearer tokens
security = HTTPBearer(auto_error=False)


async def get_current_user_id(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> str:
    """
    Resolve the authenticated user id.

    Raises 401 if not authenticated or the token is invalid.
    In development with DEV_AUTH_DISABLED=True, returns DEV_USER_ID.
    """
    if settings.auth_disabled:
        user_id = settings.DEV_USER_ID
    else:
        if credentials is None:
            raise AuthenticationError(message="Not authenticated")

        payload = decode_identity_token(credentials.credentials)
        user_id = payload.get("sub") if payload else None
        if not user_id:
            raise AuthenticationError(
                code=ErrorCodes.AUTH_INVALID_TOKEN,
                message="Invalid or expired token",
            )

    # Picked up by the New Relic middleware
    request.state.user_id = user_id
    return user_id


# Type alias for authenticated user dependency
CurrentUserId = Annotated[str, Depends(get_current_user_id)]
