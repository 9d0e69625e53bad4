"""
Affirmation Sync Service
========================

Cloud copy of the mobile app's affirmation metadata. Rows are keyed by
``(user_id, client_id)``; saves are bulk upserts, deletes are idempotent.
"""

import logging
import uuid

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from affirm.db.session import upsert_insert
from affirm.models.affirmation import Affirmation
from affirm.schemas.affirmation import AffirmationMeta
from affirm.utils.helpers import from_epoch_ms, mask_id, to_epoch_ms, utc_now

logger = logging.getLogger(__name__)

# Overwritten by every save
SYNCED_FIELDS = (
    "text",
    "image_keys",
    "audio_key",
    "video_key",
    "archived",
    "updated_at",
)


def to_meta(affirmation: Affirmation) -> AffirmationMeta:
    image_keys = affirmation.image_keys or []
    return AffirmationMeta(
        id=affirmation.client_id,
        created_at=to_epoch_ms(affirmation.created_at),
        updated_at=to_epoch_ms(affirmation.updated_at),
        note=affirmation.text or "",
        has_video=bool(affirmation.video_key),
        has_audio=bool(affirmation.audio_key),
        image_count=len(image_keys),
        remote_image_keys=list(image_keys),
        remote_video_key=affirmation.video_key,
        remote_audio_key=affirmation.audio_key,
    )


class AffirmationService:
    """Service for affirmation sync operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_metas(self, user_id: str) -> list[AffirmationMeta]:
        """Non-archived affirmations, oldest first."""
        result = await self.db.execute(
            select(Affirmation)
            .where(
                Affirmation.user_id == user_id,
                Affirmation.archived.is_(False),
            )
            .order_by(Affirmation.created_at.asc())
        )
        return [to_meta(a) for a in result.scalars().all()]

    async def save_metas(self, user_id: str, items: list[AffirmationMeta]) -> int:
        """Bulk upsert; returns the number of items written."""
        now = utc_now()
        rows = [
            {
                "affirmation_id": uuid.uuid4(),
                "user_id": user_id,
                "client_id": item.id,
                "text": item.note or "",
                "image_keys": list(item.remote_image_keys),
                "audio_key": item.remote_audio_key,
                "video_key": item.remote_video_key,
                "archived": False,
                "created_at": from_epoch_ms(item.created_at) or now,
                "updated_at": from_epoch_ms(item.updated_at) or now,
            }
            for item in items
        ]

        stmt = upsert_insert(self.db, Affirmation.__table__).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "client_id"],
            set_={name: stmt.excluded[name] for name in SYNCED_FIELDS},
        )
        await self.db.execute(stmt)

        logger.info("Affirmations saved: user=%s count=%d", mask_id(user_id), len(rows))
        return len(rows)

    async def delete_meta(self, user_id: str, client_id: str) -> int:
        """Delete one affirmation; already-gone is not an error."""
        result = await self.db.execute(
            delete(Affirmation).where(
                Affirmation.user_id == user_id,
                Affirmation.client_id == client_id,
            )
        )
        return result.rowcount or 0

    async def delete_all(self, user_id: str) -> int:
        result = await self.db.execute(
            delete(Affirmation).where(Affirmation.user_id == user_id)
        )
        return result.rowcount or 0
