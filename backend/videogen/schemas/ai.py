from typing import Dict, List, Optional

from pydantic import BaseModel, field_validator

from videogen.services.llm.prompts import ENHANCEMENT_PROMPTS

MAX_SCRIPT_LENGTH = 5000
MAX_BATCH_LANGUAGES = 200


def _check_script(v: str) -> str:
    if not v or not v.strip():
        raise ValueError("Script is required")
    if len(v) > MAX_SCRIPT_LENGTH:
        raise ValueError(f"Script exceeds {MAX_SCRIPT_LENGTH} character limit")
    return v.strip()


class GenerateScriptRequest(BaseModel):
    topic: str
    duration_seconds: int = 60

    @field_validator("topic")
    @classmethod
    def check_topic(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Topic is required")
        if len(v) > 500:
            raise ValueError("Topic exceeds 500 character limit")
        return v.strip()

    @field_validator("duration_seconds")
    @classmethod
    def check_duration(cls, v: int) -> int:
        return max(10, min(int(v), 600))


class EnhanceScriptRequest(BaseModel):
    script: str
    action: str

    @field_validator("script")
    @classmethod
    def check_script(cls, v: str) -> str:
        return _check_script(v)

    @field_validator("action")
    @classmethod
    def check_action(cls, v: str) -> str:
        if v not in ENHANCEMENT_PROMPTS:
            raise ValueError(f"Invalid action. Must be one of: {', '.join(ENHANCEMENT_PROMPTS)}")
        return v


class TranslateScriptRequest(BaseModel):
    script: str
    target_language: str
    source_language: Optional[str] = None

    @field_validator("script")
    @classmethod
    def check_script(cls, v: str) -> str:
        return _check_script(v)

    @field_validator("target_language")
    @classmethod
    def check_target(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Target language is required")
        return v.strip()


class TranslateBatchRequest(BaseModel):
    script: str
    target_languages: List[str]
    source_language: Optional[str] = None

    @field_validator("script")
    @classmethod
    def check_script(cls, v: str) -> str:
        return _check_script(v)

    @field_validator("target_languages")
    @classmethod
    def check_targets(cls, v: List[str]) -> List[str]:
        cleaned = [s.strip() for s in v if isinstance(s, str) and s.strip()]
        if not cleaned:
            raise ValueError("At least one target language is required")
        if len(cleaned) > MAX_BATCH_LANGUAGES:
            raise ValueError("Too many target languages")
        return cleaned


class ScriptResponse(BaseModel):
    script: str


class EnhancedScriptResponse(BaseModel):
    enhanced_script: str


class TranslatedScriptResponse(BaseModel):
    translated_script: str


class TranslateBatchResponse(BaseModel):
    translations: Dict[str, str]
    errors: Optional[Dict[str, str]] = None
    credits_used: int
