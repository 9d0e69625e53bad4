"""
User Model
==========

SQLAlchemy model for user profiles. The primary key is the subject id
issued by the identity provider.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from affirm.db.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    """
    User profile model.
    """

    __tablename__ = "users"

    # Identity-provider subject
    user_id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )

    email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    birthday: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
    )

    # Avatar in object storage
    avatar_url: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )
    avatar_key: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )

    # Preferences
    locale: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
    )
    timezone: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        default="UTC",
    )

    last_login_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<User(user_id={self.user_id}, name={self.name})>"

    @property
    def profile_completed(self) -> bool:
        return bool(self.name)
