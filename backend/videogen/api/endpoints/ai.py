from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from videogen.api.deps import get_llm
from videogen.core.database import get_db
from videogen.core.errors import APIError
from videogen.core.security import CurrentUser, get_current_user
from videogen.schemas.ai import (
    EnhanceScriptRequest,
    EnhancedScriptResponse,
    GenerateScriptRequest,
    ScriptResponse,
    TranslateBatchRequest,
    TranslateBatchResponse,
    TranslateScriptRequest,
    TranslatedScriptResponse,
)
from videogen.services.llm.client import LLMDisabledError, OpenAICompatibleLLM
from videogen.services.llm.prompts import (
    ENHANCEMENT_PROMPTS,
    SCRIPT_TRANSLATOR_SYSTEM,
    SCRIPT_WRITER_SYSTEM,
    script_writer_prompt,
    translate_prompt,
)
from videogen.services.quotas import record_ai_usage, require_ai_quota
from videogen.services.translation import translate_batch

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(get_current_user)])


async def _complete(llm: OpenAICompatibleLLM, *, system: str, user: str, purpose: str, failure: str) -> str:
    try:
        completion = await llm.complete(system=system, user=user, purpose=purpose)
    except LLMDisabledError as e:
        raise APIError(503, str(e))
    except Exception as e:
        logger.warning("ai.completion_failed purpose=%s error=%s", purpose, e)
        raise APIError(500, failure)
    return completion.content


@router.post("/ai/generate-script", response_model=ScriptResponse)
async def generate_script(
    body: GenerateScriptRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    llm: OpenAICompatibleLLM = Depends(get_llm),
):
    require_ai_quota(db, current_user.id)
    script = await _complete(
        llm,
        system=SCRIPT_WRITER_SYSTEM,
        user=script_writer_prompt(body.topic, body.duration_seconds),
        purpose="generate_script",
        failure="Failed to generate script",
    )
    record_ai_usage(db, current_user.id, "generate", body.topic, script[:500])
    return ScriptResponse(script=script)


@router.post("/ai/enhance-script", response_model=EnhancedScriptResponse)
async def enhance_script(
    body: EnhanceScriptRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    llm: OpenAICompatibleLLM = Depends(get_llm),
):
    require_ai_quota(db, current_user.id)
    enhanced = await _complete(
        llm,
        system=ENHANCEMENT_PROMPTS[body.action],
        user=body.script,
        purpose=f"enhance_script:{body.action}",
        failure="Failed to enhance script",
    )
    record_ai_usage(db, current_user.id, "enhance", f"{body.action}: {body.script[:200]}", enhanced[:500])
    return EnhancedScriptResponse(enhanced_script=enhanced)


@router.post("/ai/translate-script", response_model=TranslatedScriptResponse)
async def translate_script(
    body: TranslateScriptRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    llm: OpenAICompatibleLLM = Depends(get_llm),
):
    require_ai_quota(db, current_user.id)
    translated = await _complete(
        llm,
        system=SCRIPT_TRANSLATOR_SYSTEM,
        user=translate_prompt(body.script, body.source_language or "", body.target_language),
        purpose="translate_script",
        failure="Failed to translate script",
    )
    record_ai_usage(db, current_user.id, "translate", f"-> {body.target_language}: {body.script[:200]}", translated[:500])
    return TranslatedScriptResponse(translated_script=translated)


@router.post("/ai/translate-batch", response_model=TranslateBatchResponse)
async def translate_script_batch(
    body: TranslateBatchRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    llm: OpenAICompatibleLLM = Depends(get_llm),
):
    async def translate_one(language: str) -> str:
        completion = await llm.complete(
            system=SCRIPT_TRANSLATOR_SYSTEM,
            user=translate_prompt(body.script, body.source_language or "", language),
            purpose="translate_batch",
        )
        return completion.content

    result = await translate_batch(
        db,
        user_id=current_user.id,
        target_languages=body.target_languages,
        translate=translate_one,
    )
    record_ai_usage(
        db,
        current_user.id,
        "translate_batch",
        f"{len(body.target_languages)} languages: {body.script[:200]}",
        f"ok={len(result.translations)} failed={len(result.errors)} credits={result.credits_used}",
    )
    return TranslateBatchResponse(
        translations=result.translations,
        errors=result.errors or None,
        credits_used=result.credits_used,
    )
