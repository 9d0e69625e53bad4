"""
Affirmation Model
=================

Cloud copy of affirmation metadata synced from the mobile app. Media
lives in object storage; only the keys are stored here.
"""

from typing import Optional
import uuid

from sqlalchemy import Boolean, String, Text, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from affirm.db.base import Base, JSONType, TimestampMixin


class Affirmation(Base, TimestampMixin):
    """Affirmation metadata, unique per (user_id, client_id)."""

    __tablename__ = "affirmations"

    affirmation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    # Local id assigned by the mobile app
    client_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    tags: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)

    image_keys: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    audio_key: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    video_key: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    is_favorite: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "client_id", name="uq_affirmation_user_client"),
    )

    def __repr__(self) -> str:
        return f"<Affirmation(user_id={self.user_id}, client_id={self.client_id})>"
