from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator

from videogen.services.tts import VOICE_IDS

MAX_SCRIPT_LENGTH = 5000


class VoiceoverRequest(BaseModel):
    script: str
    voice: str
    instructions: Optional[str] = None
    speed: float = 1.0
    video_id: Optional[str] = None

    @field_validator("script")
    @classmethod
    def check_script(cls, v: str) -> str:
        text = (v or "").strip()
        if not text:
            raise ValueError("Script is required")
        if len(v) > MAX_SCRIPT_LENGTH:
            raise ValueError(f"Script exceeds {MAX_SCRIPT_LENGTH} character limit")
        return text

    @field_validator("voice")
    @classmethod
    def check_voice(cls, v: str) -> str:
        if v not in VOICE_IDS:
            raise ValueError("Invalid voice selection")
        return v

    @field_validator("instructions")
    @classmethod
    def check_instructions(cls, v: Optional[str]) -> Optional[str]:
        return (v or "").strip() or None

    @field_validator("speed")
    @classmethod
    def check_speed(cls, v: float) -> float:
        if v < 0.25 or v > 4.0:
            raise ValueError("Speed must be between 0.25 and 4.0")
        return v


class VoiceoverResponse(BaseModel):
    id: str
    video_id: Optional[str] = None
    voice: str
    script: str
    instructions: Optional[str] = None
    speed: float
    audio_url: str
    duration_seconds: Optional[int] = None
    credits_used: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VoiceoverEnvelope(BaseModel):
    voiceover: VoiceoverResponse


class Voice(BaseModel):
    id: str
    name: str
    gender: str
    description: str


class VoiceListResponse(BaseModel):
    voices: List[Voice]
