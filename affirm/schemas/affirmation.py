"""
Affirmation Schemas
===================

Cloud sync metadata exchanged with the mobile app.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from affirm.utils.helpers import is_valid_epoch_ms


class AffirmationMeta(BaseModel):
    """Affirmation metadata as the mobile app sees it; ``id`` is the client id."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1, max_length=255)
    created_at: Optional[int] = Field(default=None, alias="createdAt")  # epoch millis
    updated_at: Optional[int] = Field(default=None, alias="updatedAt")
    note: str = ""
    has_video: bool = Field(default=False, alias="hasVideo")
    has_audio: bool = Field(default=False, alias="hasAudio")
    image_count: int = Field(default=0, alias="imageCount")
    remote_image_keys: list[str] = Field(default_factory=list, alias="remoteImageKeys")
    remote_video_key: Optional[str] = Field(default=None, alias="remoteVideoKey")
    remote_audio_key: Optional[str] = Field(default=None, alias="remoteAudioKey")

    @field_validator("created_at", "updated_at")
    @classmethod
    def check_epoch_range(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not is_valid_epoch_ms(v):
            raise ValueError("timestamp out of range")
        return v


class AffirmationSaveRequest(BaseModel):
    """Request body for ``POST /cloud/affirms/save``."""

    items: list[AffirmationMeta] = Field(default_factory=list)


class AffirmationDeleteRequest(BaseModel):
    """Request body for ``POST /cloud/affirms/delete``."""

    id: str = Field(min_length=1)
