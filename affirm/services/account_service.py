"""
Account Deletion Service
========================

Deletes a user's app data and their identity-provider account.

Removed: affirmations, the profile row, the avatar blob, and the
identity-provider user. The payment ledger and subscription state rows
are kept as financial records.
"""

import logging
from typing import Optional

import httpx
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from affirm.config import settings
from affirm.core.errors import UpstreamServiceError
from affirm.models.user import User
from affirm.services.affirmation_service import AffirmationService
from affirm.services.avatar_storage import AvatarStorageService, get_storage_service
from affirm.services.profile_service import ProfileService
from affirm.utils.helpers import mask_id

logger = logging.getLogger(__name__)


class IdentityAdminClient:
    """Admin API of the identity provider (user deletion)."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        secret: Optional[str] = None,
        timeout: float = 10.0,
    ):
        self.base_url = (base_url if base_url is not None else settings.IDENTITY_API_URL).rstrip("/")
        self.secret = secret if secret is not None else settings.IDENTITY_API_SECRET
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def delete_user(self, user_id: str) -> None:
        """
        Delete the identity-provider user. A 404 counts as already deleted.

        Raises:
            UpstreamServiceError: on transport errors or other non-2xx responses.
        """
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.delete(
                    f"{self.base_url}/users/{user_id}",
                    headers={"Authorization": f"Bearer {self.secret}"},
                )
            except httpx.HTTPError as e:
                logger.error("Identity provider request failed for user %s: %s", mask_id(user_id), e)
                raise UpstreamServiceError("identity_provider", str(e)) from e

        if response.status_code == 404:
            logger.info("Identity user %s already deleted", mask_id(user_id))
            return
        if response.is_error:
            logger.error(
                "Identity provider returned status %d deleting user %s: %s",
                response.status_code,
                mask_id(user_id),
                response.text[:200],
            )
            raise UpstreamServiceError(
                "identity_provider", f"unexpected status {response.status_code}"
            )


class AccountService:
    """Service for account deletion."""

    def __init__(
        self,
        db: AsyncSession,
        identity_client: Optional[IdentityAdminClient] = None,
        storage: Optional[AvatarStorageService] = None,
    ):
        self.db = db
        self.identity_client = identity_client or IdentityAdminClient()
        self.storage = storage or get_storage_service()

    async def delete_account(self, user_id: str) -> None:
        """
        Delete app data, then the identity user, then the avatar blob.

        The database deletes are flushed but not committed; if the identity
        provider call fails the caller's session rolls them back.
        """
        user = await ProfileService(self.db).get_user(user_id)
        avatar_key = user.avatar_key if user else None

        deleted_affirmations = await AffirmationService(self.db).delete_all(user_id)
        await self.db.execute(delete(User).where(User.user_id == user_id))
        await self.db.flush()

        if self.identity_client.enabled:
            await self.identity_client.delete_user(user_id)
        else:
            logger.warning("IDENTITY_API_URL not configured, identity user %s kept", mask_id(user_id))

        if avatar_key and self.storage.configured:
            try:
                await self.storage.delete_avatar(avatar_key)
            except UpstreamServiceError as e:
                # Orphaned blob; the account itself is gone
                logger.warning("Avatar blob not deleted for user %s: %s", mask_id(user_id), e)

        logger.info(
            "Account deleted: user=%s affirmations=%d",
            mask_id(user_id),
            deleted_affirmations,
        )
