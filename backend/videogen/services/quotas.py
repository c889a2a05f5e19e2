from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from videogen.core.errors import limit_reached, plan_required
from videogen.models.ai_usage import AIUsageEvent
from videogen.models.generation_job import GenerationJob, JobKind, JobStatus, Provider
from videogen.models.subscription import Subscription
from videogen.services import plans

logger = logging.getLogger(__name__)

AI_LIMIT_MESSAGE = "Monthly AI limit reached. Upgrade your plan for unlimited AI features."
VIDEO_LIMIT_MESSAGE = "Monthly video limit reached. Upgrade your plan for unlimited videos."
VEO_PLAN_MESSAGE = "AI Video Studio requires the Creator plan or higher."
BATCH_PLAN_MESSAGE = "Multi-clip videos require the Creator plan or higher."


def first_day_of_month(now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def get_subscription(db: Session, user_id: str) -> Subscription | None:
    return db.query(Subscription).filter(Subscription.user_id == user_id).first()


def user_plan(db: Session, user_id: str) -> str:
    sub = get_subscription(db, user_id)
    if sub is None:
        return "free"
    return plans.effective_plan(sub.plan, sub.status)


def videos_this_month(db: Session, user_id: str) -> int:
    # Failed avatar videos do not count towards the monthly allowance.
    return int(
        db.query(func.count(GenerationJob.id))
        .filter(
            GenerationJob.user_id == user_id,
            GenerationJob.kind == JobKind.VIDEO,
            GenerationJob.provider == Provider.HEYGEN,
            GenerationJob.status != JobStatus.FAILED,
            GenerationJob.created_at >= first_day_of_month(),
        )
        .scalar()
        or 0
    )


def ai_uses_this_month(db: Session, user_id: str) -> int:
    return int(
        db.query(func.count(AIUsageEvent.id))
        .filter(AIUsageEvent.user_id == user_id, AIUsageEvent.created_at >= first_day_of_month())
        .scalar()
        or 0
    )


def require_veo_access(db: Session, user_id: str) -> str:
    plan = user_plan(db, user_id)
    if not plans.can_use_veo(plan):
        raise plan_required(VEO_PLAN_MESSAGE)
    return plan


def require_batch_creation(db: Session, user_id: str) -> str:
    plan = require_veo_access(db, user_id)
    if not plans.can_batch_create(plan):
        raise plan_required(BATCH_PLAN_MESSAGE)
    return plan


def require_video_quota(db: Session, user_id: str) -> str:
    plan = user_plan(db, user_id)
    if not plans.can_generate_video(plan, videos_this_month(db, user_id)):
        raise limit_reached(VIDEO_LIMIT_MESSAGE)
    return plan


def require_ai_quota(db: Session, user_id: str) -> str:
    plan = user_plan(db, user_id)
    if not plans.can_use_ai(plan, ai_uses_this_month(db, user_id)):
        raise limit_reached(AI_LIMIT_MESSAGE)
    return plan


def record_ai_usage(db: Session, user_id: str, action: str, input_summary: str = "", output_summary: str = "") -> None:
    db.add(
        AIUsageEvent(
            user_id=user_id,
            action=action,
            input_summary=(input_summary or "")[:2000],
            output_summary=(output_summary or "")[:2000],
        )
    )
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("ai_usage.record_failed user=%s action=%s", user_id, action)
