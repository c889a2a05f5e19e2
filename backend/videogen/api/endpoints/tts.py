from __future__ import annotations

from fastapi import APIRouter, Depends
from openai import OpenAIError
from sqlalchemy.orm import Session

from videogen.api.deps import get_object_storage, get_speech
from videogen.core.database import get_db
from videogen.core.errors import APIError, provider_error_response
from videogen.core.security import CurrentUser, get_current_user
from videogen.schemas.tts import VoiceListResponse, VoiceoverEnvelope, VoiceoverRequest, VoiceoverResponse
from videogen.services.storage import Storage, StorageError
from videogen.services.tts import TTS_VOICES, SpeechSynthesizer, generate_voiceover

router = APIRouter(dependencies=[Depends(get_current_user)])


@router.get("/tts/voices", response_model=VoiceListResponse)
async def list_voices():
    return {"voices": TTS_VOICES}


@router.post("/tts/generate", response_model=VoiceoverEnvelope)
async def generate_tts(
    body: VoiceoverRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    synthesizer: SpeechSynthesizer = Depends(get_speech),
    storage: Storage = Depends(get_object_storage),
):
    try:
        voiceover = await generate_voiceover(
            db,
            user_id=current_user.id,
            script=body.script,
            voice=body.voice,
            speed=body.speed,
            instructions=body.instructions,
            video_id=body.video_id,
            synthesizer=synthesizer,
            storage=storage,
        )
    except OpenAIError as e:
        raise provider_error_response(e, "Failed to generate voiceover", "OpenAI TTS")
    except StorageError:
        raise APIError(500, "Failed to store voiceover")
    return VoiceoverEnvelope(voiceover=VoiceoverResponse.model_validate(voiceover))
