from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, field_validator, model_validator

from videogen.models.generation_job import JobKind, JobStatus, Provider, VideoMode
from videogen.services.credits import VEO_MODELS, VEO_STANDARD_MODEL

VALID_VEO_DURATIONS = (4, 6, 8)
VALID_VEO_ASPECT_RATIOS = ("16:9", "9:16")
VALID_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp")
MAX_REFERENCE_IMAGES = 3
MAX_IMAGE_BASE64_LENGTH = 15_000_000

IMAGE_RESOLUTIONS = ("1K", "2K", "4K")
IMAGE_ASPECT_RATIOS = ("1:1", "4:3", "3:4", "16:9", "9:16")
IMAGE_FORMATS = ("png", "jpg", "webp")


def _required_text(value: Optional[str], label: str, max_len: int | None = None) -> str:
    text = (value or "").strip()
    if not text:
        raise ValueError(f"{label} is required")
    if max_len is not None and len(value or "") > max_len:
        raise ValueError(f"{label} exceeds {max_len} character limit")
    return text


class JobResponse(BaseModel):
    id: str
    kind: JobKind
    mode: Optional[str] = None
    provider: Provider
    status: JobStatus
    title: Optional[str] = None
    prompt: Optional[str] = None
    script: Optional[str] = None
    model: Optional[str] = None
    operation_handle: Optional[str] = None
    credits_used: int = 0
    output_url: Optional[str] = None
    output_urls: Optional[List[str]] = None
    thumbnail_url: Optional[str] = None
    duration_seconds: Optional[int] = None
    error_message: Optional[str] = None
    parent_job_id: Optional[str] = None
    extend_count: Optional[int] = None
    params: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class JobEnvelope(BaseModel):
    job: JobResponse


class JobListResponse(BaseModel):
    items: List[JobResponse]
    total: int
    limit: int
    offset: int


class VideoCreate(BaseModel):
    title: str
    mode: VideoMode = VideoMode.AVATAR
    script: str
    voice_id: str
    avatar_id: Optional[str] = None
    custom_avatar_id: Optional[str] = None
    aspect_ratio: str = "16:9"

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str) -> str:
        return _required_text(v, "Title", 200)

    @field_validator("script")
    @classmethod
    def check_script(cls, v: str) -> str:
        return _required_text(v, "Script", 5000)

    @field_validator("mode")
    @classmethod
    def check_mode(cls, v: VideoMode) -> VideoMode:
        if v not in (VideoMode.AVATAR, VideoMode.PROMPT, VideoMode.CUSTOM_AVATAR):
            raise ValueError("Invalid mode. Must be avatar, prompt or custom_avatar.")
        return v

    @field_validator("aspect_ratio")
    @classmethod
    def check_aspect(cls, v: str) -> str:
        if v not in VALID_VEO_ASPECT_RATIOS:
            raise ValueError("Invalid aspect ratio. Must be 16:9 or 9:16.")
        return v

    @model_validator(mode="after")
    def check_avatar(self) -> "VideoCreate":
        if self.mode == VideoMode.CUSTOM_AVATAR and not self.custom_avatar_id:
            raise ValueError("custom_avatar_id is required for custom avatar videos")
        if self.mode != VideoMode.CUSTOM_AVATAR and not self.avatar_id:
            raise ValueError("avatar_id is required")
        return self


class ImageInput(BaseModel):
    base64: str
    mime_type: str

    @field_validator("base64")
    @classmethod
    def check_size(cls, v: str) -> str:
        if not v or len(v) > MAX_IMAGE_BASE64_LENGTH:
            raise ValueError("Invalid image. Each image must be under 10MB.")
        return v

    @field_validator("mime_type")
    @classmethod
    def check_type(cls, v: str) -> str:
        if v not in VALID_IMAGE_TYPES:
            raise ValueError("Invalid image type. Use JPEG, PNG, or WebP.")
        return v


class VeoGenerateRequest(BaseModel):
    title: str
    prompt: str
    negative_prompt: Optional[str] = None
    duration: int = 8
    aspect_ratio: str = "16:9"
    model: str = VEO_STANDARD_MODEL
    generate_audio: bool = False
    reference_images: Optional[List[ImageInput]] = None
    start_frame: Optional[ImageInput] = None
    end_frame: Optional[ImageInput] = None
    style: Optional[str] = None

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str) -> str:
        return _required_text(v, "Title", 200)

    @field_validator("prompt")
    @classmethod
    def check_prompt(cls, v: str) -> str:
        return _required_text(v, "Prompt", 5000)

    @field_validator("negative_prompt")
    @classmethod
    def check_negative(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) > 2000:
            raise ValueError("Negative prompt exceeds 2000 character limit")
        return (v or "").strip() or None

    @field_validator("duration")
    @classmethod
    def check_duration(cls, v: int) -> int:
        if v not in VALID_VEO_DURATIONS:
            raise ValueError("Invalid duration. Must be 4, 6, or 8 seconds.")
        return v

    @field_validator("aspect_ratio")
    @classmethod
    def check_aspect(cls, v: str) -> str:
        if v not in VALID_VEO_ASPECT_RATIOS:
            raise ValueError("Invalid aspect ratio. Must be 16:9 or 9:16.")
        return v

    @field_validator("model")
    @classmethod
    def check_model(cls, v: str) -> str:
        if v not in VEO_MODELS:
            raise ValueError("Invalid model.")
        return v

    @field_validator("reference_images")
    @classmethod
    def check_refs(cls, v: Optional[List[ImageInput]]) -> Optional[List[ImageInput]]:
        if v is not None and len(v) > MAX_REFERENCE_IMAGES:
            raise ValueError(f"Maximum {MAX_REFERENCE_IMAGES} reference images allowed.")
        return v


class VeoExtendRequest(BaseModel):
    video_id: str
    prompt: str
    duration: Optional[int] = None

    @field_validator("prompt")
    @classmethod
    def check_prompt(cls, v: str) -> str:
        return _required_text(v, "Prompt", 5000)

    @field_validator("duration")
    @classmethod
    def check_duration(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v not in VALID_VEO_DURATIONS:
            raise ValueError("Invalid duration. Must be 4, 6, or 8 seconds.")
        return v


class VeoCancelRequest(BaseModel):
    video_id: str


MAX_SEGMENTS = 500
SEGMENT_IMAGE_MODES = ("reference", "start_frame")


class SegmentInput(BaseModel):
    prompt: str
    duration: int = 8
    image_mode: Optional[str] = None
    label: Optional[str] = None

    @field_validator("prompt")
    @classmethod
    def check_prompt(cls, v: str) -> str:
        return _required_text(v, "Segment prompt", 5000)

    @field_validator("duration")
    @classmethod
    def check_duration(cls, v: int) -> int:
        if v not in VALID_VEO_DURATIONS:
            raise ValueError("Each segment must have a valid duration (4, 6, or 8)")
        return v

    @field_validator("image_mode")
    @classmethod
    def check_image_mode(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in SEGMENT_IMAGE_MODES:
            raise ValueError("image_mode must be reference or start_frame")
        return v


class MultiSegmentRequest(BaseModel):
    title: str
    template_id: str
    segments: List[SegmentInput]
    aspect_ratio: str = "16:9"
    model: str = VEO_STANDARD_MODEL
    generate_audio: bool = False
    product_images: Optional[List[ImageInput]] = None
    style: Optional[str] = None

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str) -> str:
        return _required_text(v, "Title", 200)

    @field_validator("template_id")
    @classmethod
    def check_template(cls, v: str) -> str:
        return _required_text(v, "Template ID")

    @field_validator("segments")
    @classmethod
    def check_segments(cls, v: List[SegmentInput]) -> List[SegmentInput]:
        if not v or len(v) > MAX_SEGMENTS:
            raise ValueError(f"Segments array is required (1-{MAX_SEGMENTS})")
        return v

    @field_validator("aspect_ratio")
    @classmethod
    def check_aspect(cls, v: str) -> str:
        if v not in VALID_VEO_ASPECT_RATIOS:
            raise ValueError("Invalid aspect ratio. Must be 16:9 or 9:16.")
        return v

    @field_validator("model")
    @classmethod
    def check_model(cls, v: str) -> str:
        if v not in VEO_MODELS:
            raise ValueError("Invalid model.")
        return v

    @field_validator("product_images")
    @classmethod
    def check_images(cls, v: Optional[List[ImageInput]]) -> Optional[List[ImageInput]]:
        if v is not None and len(v) > MAX_REFERENCE_IMAGES:
            raise ValueError(f"Maximum {MAX_REFERENCE_IMAGES} product images allowed")
        return v


class MultiSegmentStatus(BaseModel):
    job: JobResponse
    total_segments: int
    completed_segments: int
    failed_segments: int
    current_segment_label: Optional[str] = None


class ImageGenerateRequest(BaseModel):
    prompt: str
    resolution: str = "1K"
    aspect_ratio: str = "1:1"
    output_format: str = "png"
    num_images: int = 1
    image_urls: Optional[List[str]] = None

    @field_validator("prompt")
    @classmethod
    def check_prompt(cls, v: str) -> str:
        return _required_text(v, "Prompt", 2000)

    @field_validator("resolution")
    @classmethod
    def check_resolution(cls, v: str) -> str:
        if v not in IMAGE_RESOLUTIONS:
            raise ValueError("Invalid resolution. Must be 1K, 2K, or 4K.")
        return v

    @field_validator("aspect_ratio")
    @classmethod
    def check_aspect(cls, v: str) -> str:
        if v not in IMAGE_ASPECT_RATIOS:
            raise ValueError("Invalid aspect ratio.")
        return v

    @field_validator("output_format")
    @classmethod
    def check_format(cls, v: str) -> str:
        if v not in IMAGE_FORMATS:
            raise ValueError("Invalid output format. Use png, jpg, or webp.")
        return v

    @field_validator("num_images")
    @classmethod
    def check_count(cls, v: int) -> int:
        if v < 1 or v > 4:
            raise ValueError("num_images must be between 1 and 4")
        return v


class MusicGenerateRequest(BaseModel):
    prompt: str
    duration_seconds: int = 15
    title: Optional[str] = None

    @field_validator("prompt")
    @classmethod
    def check_prompt(cls, v: str) -> str:
        return _required_text(v, "Prompt", 500)

    @field_validator("duration_seconds")
    @classmethod
    def check_duration(cls, v: int) -> int:
        return max(5, min(int(v), 30))
