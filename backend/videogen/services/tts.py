from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

import httpx
from openai import AsyncOpenAI, OpenAIError
from sqlalchemy.orm import Session

from videogen.core.errors import APIError
from videogen.core.settings import settings
from videogen.models.voiceover import Voiceover
from videogen.services.credits import VOICEOVER_CREDIT_COST, consume_credits, refund_credits
from videogen.services.storage import Storage, StorageError

logger = logging.getLogger(__name__)

TTS_VOICES: list[dict[str, str]] = [
    {"id": "alloy", "name": "Alloy", "gender": "neutral", "description": "Warm and balanced"},
    {"id": "ash", "name": "Ash", "gender": "male", "description": "Clear and confident"},
    {"id": "ballad", "name": "Ballad", "gender": "male", "description": "Smooth and expressive"},
    {"id": "coral", "name": "Coral", "gender": "female", "description": "Friendly and natural"},
    {"id": "echo", "name": "Echo", "gender": "male", "description": "Soft-spoken and calm"},
    {"id": "fable", "name": "Fable", "gender": "neutral", "description": "Storytelling and warm"},
    {"id": "juniper", "name": "Juniper", "gender": "female", "description": "Bright and engaging"},
    {"id": "nova", "name": "Nova", "gender": "female", "description": "Energetic and clear"},
    {"id": "onyx", "name": "Onyx", "gender": "male", "description": "Deep and authoritative"},
    {"id": "sage", "name": "Sage", "gender": "neutral", "description": "Thoughtful and composed"},
    {"id": "shimmer", "name": "Shimmer", "gender": "female", "description": "Warm and soothing"},
]
VOICE_IDS = frozenset(v["id"] for v in TTS_VOICES)

WORDS_PER_MINUTE = 150


class TTSDisabledError(RuntimeError):
    pass


class SpeechSynthesizer:
    """OpenAI text-to-speech, returning MP3 bytes."""

    def __init__(self, *, api_key: str, model: str, timeout_s: float = 60.0) -> None:
        self._client = AsyncOpenAI(api_key=api_key, http_client=httpx.AsyncClient(timeout=httpx.Timeout(timeout_s)))
        self.model = model

    async def aclose(self) -> None:
        await self._client.close()

    async def synthesize(self, *, text: str, voice: str, instructions: str | None = None, speed: float = 1.0) -> bytes:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "input": text,
            "voice": voice,
            "speed": speed,
            "response_format": "mp3",
        }
        if instructions:
            kwargs["instructions"] = instructions
        response = await self._client.audio.speech.create(**kwargs)
        return response.content


_synthesizer: SpeechSynthesizer | None = None


def get_speech_synthesizer() -> SpeechSynthesizer:
    global _synthesizer
    if _synthesizer is None:
        if not settings.tts_api_key:
            raise TTSDisabledError("Voiceover generation is not configured")
        _synthesizer = SpeechSynthesizer(
            api_key=settings.tts_api_key,
            model=settings.tts_model,
            timeout_s=settings.provider_timeout_s,
        )
    return _synthesizer


def estimate_duration_seconds(script: str, speed: float) -> int:
    words = len(script.split())
    return round(words / WORDS_PER_MINUTE * 60 / (speed or 1.0))


def _refund(db: Session, user_id: str, voiceover_id: str, reason: str) -> None:
    refund_credits(
        db,
        user_id=user_id,
        amount=VOICEOVER_CREDIT_COST,
        resource_id=voiceover_id,
        reason=reason,
        resource_type="voiceover",
    )


async def generate_voiceover(
    db: Session,
    *,
    user_id: str,
    script: str,
    voice: str,
    speed: float,
    synthesizer: SpeechSynthesizer,
    storage: Storage,
    instructions: str | None = None,
    video_id: str | None = None,
) -> Voiceover:
    """Charge, synthesize, upload and record one voiceover.

    The credit is taken before OpenAI is called and given back if synthesis,
    upload or the insert fails; those errors are re-raised for the caller.
    """
    voiceover_id = str(uuid4())
    debit = consume_credits(
        db,
        user_id=user_id,
        amount=VOICEOVER_CREDIT_COST,
        resource_type="voiceover",
        resource_id=voiceover_id,
        description=f"Voiceover generation ({voice}, {speed}x speed)",
    )
    if not debit.success:
        raise APIError(
            403,
            f"Need {VOICEOVER_CREDIT_COST} credit for voiceover generation. You have {debit.remaining} credits.",
            code="INSUFFICIENT_CREDITS",
        )

    try:
        audio = await synthesizer.synthesize(text=script, voice=voice, instructions=instructions, speed=speed)
        audio_url = await storage.upload(
            settings.storage_bucket_voiceovers, f"{user_id}/{voiceover_id}.mp3", audio, "audio/mpeg"
        )
    except (OpenAIError, StorageError) as e:
        logger.warning("tts.generate_failed voiceover=%s user=%s error=%s", voiceover_id, user_id, e)
        _refund(db, user_id, voiceover_id, "Voiceover generation failed - auto-refund")
        raise

    voiceover = Voiceover(
        id=voiceover_id,
        user_id=user_id,
        video_id=video_id,
        voice=voice,
        script=script,
        instructions=instructions,
        speed=speed,
        audio_url=audio_url,
        duration_seconds=estimate_duration_seconds(script, speed),
        credits_used=VOICEOVER_CREDIT_COST,
    )
    db.add(voiceover)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("tts.insert_failed voiceover=%s user=%s", voiceover_id, user_id)
        _refund(db, user_id, voiceover_id, "Voiceover could not be recorded - auto-refund")
        raise
    db.refresh(voiceover)
    logger.info("tts.generated voiceover=%s user=%s voice=%s", voiceover_id, user_id, voice)
    return voiceover


async def close_speech_synthesizer() -> None:
    global _synthesizer
    if _synthesizer is not None:
        await _synthesizer.aclose()
        _synthesizer = None
