"""
Profile Schemas
===============

Pydantic schemas for profile endpoints. Field names follow the mobile
app's camelCase DTO.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from affirm.utils.helpers import is_valid_epoch_ms


DEFAULT_BIRTHDAY = "2000-01-01"


class ProfileDto(BaseModel):
    """Profile as rendered to the mobile app."""

    model_config = ConfigDict(populate_by_name=True)

    avatar_uri: Optional[str] = Field(default=None, alias="avatarUri")
    name: str = ""
    birthday: str = DEFAULT_BIRTHDAY  # YYYY-MM-DD
    created_at: int = Field(alias="createdAt")  # epoch millis


class ProfileUpdateRequest(BaseModel):
    """Request body for ``PUT /profiles``."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(default=None, max_length=255)
    birthday: Optional[str] = None
    avatar_uri: Optional[str] = Field(default=None, alias="avatarUri")
    created_at: Optional[float] = Field(default=None, alias="createdAt")

    @field_validator("created_at")
    @classmethod
    def check_epoch_range(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not is_valid_epoch_ms(v):
            raise ValueError("createdAt out of range")
        return v


class AvatarUploadResponse(BaseModel):
    """Response for ``POST /me/avatar``."""

    model_config = ConfigDict(populate_by_name=True)

    avatar_uri: str = Field(alias="avatarUri")
