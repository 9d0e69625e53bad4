"""
Webhook Event Model
===================

Audit log of received RevenueCat events, unique on the event id.
"""

from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from affirm.db.base import Base, JSONType


class WebhookEvent(Base):
    """Received webhook event."""

    __tablename__ = "webhook_events"

    webhook_event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    event_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    provider: Mapped[str] = mapped_column(
        String(50),
        default="revenuecat",
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    user_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    raw_payload: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<WebhookEvent(event_id={self.event_id}, type={self.event_type})>"
