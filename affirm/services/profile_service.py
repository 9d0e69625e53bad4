"""
Profile Service
===============

Profile reads and keyed upserts for the ``users`` table.
"""

import logging
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from affirm.core.errors import ValidationError
from affirm.db.session import upsert_insert
from affirm.models.user import User
from affirm.schemas.profile import DEFAULT_BIRTHDAY, ProfileDto, ProfileUpdateRequest
from affirm.utils.helpers import from_epoch_ms, mask_id, to_epoch_ms, utc_now

logger = logging.getLogger(__name__)


def parse_birthday(value: Optional[str]) -> Optional[date]:
    """Accept ``YYYY-MM-DD`` or a full ISO 8601 timestamp."""
    if not value:
        return None
    try:
        if len(value) == 10:
            return date.fromisoformat(value)
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        raise ValidationError(message="birthday must be an ISO 8601 date", field="birthday")


def to_profile_dto(user: User) -> ProfileDto:
    created_at = to_epoch_ms(user.created_at) or to_epoch_ms(utc_now())
    return ProfileDto(
        avatar_uri=user.avatar_url,
        name=user.name or "",
        birthday=user.birthday.isoformat() if user.birthday else DEFAULT_BIRTHDAY,
        created_at=created_at,
    )


class ProfileService:
    """Service for profile operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.user_id == user_id))
        return result.scalar_one_or_none()

    async def _upsert(
        self,
        user_id: str,
        values: dict[str, Any],
        on_insert: Optional[dict[str, Any]] = None,
    ) -> User:
        now = utc_now()
        insert_values = {
            "user_id": user_id,
            "created_at": now,
            **(on_insert or {}),
            **values,
            "updated_at": now,
        }
        stmt = upsert_insert(self.db, User).values(**insert_values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={**values, "updated_at": now},
        ).returning(User)

        result = await self.db.scalars(
            stmt,
            execution_options={"populate_existing": True},
        )
        return result.one()

    async def upsert_profile(self, user_id: str, update: ProfileUpdateRequest) -> User:
        """Create or update the caller's profile. Never auto-created on read."""
        values: dict[str, Any] = {
            "name": update.name,
            "avatar_url": update.avatar_uri,
        }
        birthday = parse_birthday(update.birthday)
        if birthday is not None:
            values["birthday"] = birthday

        on_insert = {}
        if update.created_at is not None:
            on_insert["created_at"] = from_epoch_ms(update.created_at)

        user = await self._upsert(user_id, values, on_insert)
        logger.info("Profile upserted: user=%s", mask_id(user_id))
        return user

    async def set_avatar(self, user_id: str, url: str, key: str) -> tuple[User, Optional[str]]:
        """
        Point the profile at a new avatar.

        Returns the user and the previous avatar key, if any, so the caller
        can remove the old blob.
        """
        previous = await self.get_user(user_id)
        previous_key = previous.avatar_key if previous else None

        user = await self._upsert(user_id, {"avatar_url": url, "avatar_key": key})
        return user, previous_key
