from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator

from videogen.schemas.job import MAX_IMAGE_BASE64_LENGTH, VALID_IMAGE_TYPES


class AvatarListResponse(BaseModel):
    avatars: List[Dict[str, Any]]
    custom_avatars: List["CustomAvatarResponse"] = []


class VoiceListResponse(BaseModel):
    voices: List[Dict[str, Any]]


class CreateAvatarRequest(BaseModel):
    name: str
    photo_base64: str
    mime_type: str

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        name = (v or "").strip()
        if not name:
            raise ValueError("Avatar name is required")
        if len(name) > 100:
            raise ValueError("Avatar name exceeds 100 character limit")
        return name

    @field_validator("photo_base64")
    @classmethod
    def check_photo(cls, v: str) -> str:
        if not v or len(v) > MAX_IMAGE_BASE64_LENGTH:
            raise ValueError("Invalid photo. Must be under 10MB.")
        return v

    @field_validator("mime_type")
    @classmethod
    def check_type(cls, v: str) -> str:
        if v not in VALID_IMAGE_TYPES:
            raise ValueError("Invalid image type. Use JPEG, PNG, or WebP.")
        return v


class CustomAvatarResponse(BaseModel):
    id: str
    name: str
    heygen_avatar_id: str
    photo_url: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


AvatarListResponse.model_rebuild()
