from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable
from uuid import uuid4

from sqlalchemy.orm import Session

from videogen.core.errors import APIError
from videogen.core.settings import settings
from videogen.services.credits import (
    FREE_TRANSLATION_LANGUAGES,
    chargeable_translations,
    consume_credits,
    refund_credits,
    translation_credit_cost,
)

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "batch_translation"


@dataclass
class BatchTranslationResult:
    batch_id: str
    translations: dict[str, str] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    credits_charged: int = 0
    credits_used: int = 0
    credits_refunded: int = 0


def _dedupe(languages: list[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for raw in languages:
        lang = str(raw or "").strip()
        if not lang or lang.lower() in seen:
            continue
        seen.add(lang.lower())
        out.append(lang)
    return out


async def translate_batch(
    db: Session,
    *,
    user_id: str,
    target_languages: list[str],
    translate: Callable[[str], Awaitable[str]],
    concurrency: int | None = None,
    batch_id: str | None = None,
) -> BatchTranslationResult:
    """Translate into every target language with at most ``concurrency`` calls in flight.

    The first language is free. Credits for the rest are debited before any call is
    made, then the share for failed translations is refunded, so the user pays only
    for successful paid translations. Per-language failures land in ``errors``.
    """
    languages = _dedupe(target_languages)
    batch_id = batch_id or f"translate-{uuid4()}"
    result = BatchTranslationResult(batch_id=batch_id)

    cost = translation_credit_cost(len(languages))
    if cost > 0:
        debit = consume_credits(
            db,
            user_id=user_id,
            amount=cost,
            resource_type=RESOURCE_TYPE,
            resource_id=batch_id,
            description=f"Batch translation to {len(languages)} languages",
        )
        if not debit.success:
            raise APIError(
                403,
                f"Need {cost} credits for {len(languages)} languages (first {FREE_TRANSLATION_LANGUAGES} free). "
                f"You have {debit.remaining} credits.",
                code="INSUFFICIENT_CREDITS",
            )
        result.credits_charged = cost

    sem = asyncio.Semaphore(max(1, int(concurrency or settings.translation_concurrency)))
    outcomes: dict[str, str | Exception] = {}

    async def run_one(lang: str) -> None:
        async with sem:
            try:
                outcomes[lang] = await translate(lang)
            except Exception as e:
                logger.warning("translation.item_failed batch=%s lang=%s error=%s", batch_id, lang, e)
                outcomes[lang] = e

    await asyncio.gather(*(run_one(lang) for lang in languages))

    for lang in languages:
        outcome = outcomes.get(lang)
        if isinstance(outcome, str):
            result.translations[lang] = outcome
        else:
            result.errors[lang] = "Translation failed"

    result.credits_used = chargeable_translations(len(result.translations), cost) if cost > 0 else 0
    excess = result.credits_charged - result.credits_used
    if excess > 0:
        refunded = refund_credits(
            db,
            user_id=user_id,
            amount=excess,
            resource_id=batch_id,
            reason=f"Batch translation: {excess} credits for failed languages - auto-refund",
            resource_type=RESOURCE_TYPE,
        )
        if refunded:
            result.credits_refunded = excess

    logger.info(
        "translation.batch_done batch=%s user=%s languages=%s ok=%s failed=%s credits_used=%s",
        batch_id,
        user_id,
        len(languages),
        len(result.translations),
        len(result.errors),
        result.credits_used,
    )
    return result
