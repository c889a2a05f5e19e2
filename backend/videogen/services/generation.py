from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable
from uuid import uuid4

from sqlalchemy.orm import Session

from videogen.core.errors import insufficient_credits
from videogen.models.generation_job import GenerationJob, JobKind, JobStatus, VideoMode
from videogen.services.credits import consume_credits, refund_credits
from videogen.services.jobs import fail_job, provider_for, provider_label, resource_type_for

logger = logging.getLogger(__name__)


def start_job(
    db: Session,
    *,
    user_id: str,
    kind: JobKind,
    mode: VideoMode | None = None,
    credits: int = 0,
    description: str | None = None,
    title: str | None = None,
    prompt: str | None = None,
    script: str | None = None,
    model: str | None = None,
    params: dict[str, Any] | None = None,
    parent_job_id: str | None = None,
    extend_count: int = 0,
) -> GenerationJob:
    """Charge for a new job and record it as pending.

    The debit is keyed by the job id and committed before the row exists, so no
    provider call can ever run without a durable charge. A short balance raises
    a 403 and leaves no row behind.
    """
    job = GenerationJob(
        id=str(uuid4()),
        user_id=user_id,
        kind=kind,
        mode=mode.value if mode is not None else None,
        provider=provider_for(kind, mode),
        status=JobStatus.PENDING,
        title=title,
        prompt=prompt,
        script=script,
        model=model,
        params=params or None,
        credits_used=int(credits or 0),
        parent_job_id=parent_job_id,
        extend_count=extend_count,
    )

    if job.credits_used > 0:
        debit = consume_credits(
            db,
            user_id=user_id,
            amount=job.credits_used,
            resource_type=resource_type_for(job),
            resource_id=job.id,
            description=description,
        )
        if not debit.success:
            raise insufficient_credits(job.credits_used, debit.remaining)

    db.add(job)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("generation.job_insert_failed job=%s user=%s", job.id, user_id)
        refund_credits(
            db,
            user_id=user_id,
            amount=job.credits_used,
            resource_id=job.id,
            reason="Job could not be recorded - auto-refund",
            resource_type=resource_type_for(job),
        )
        raise
    db.refresh(job)
    logger.info(
        "generation.job_created job=%s user=%s kind=%s provider=%s credits=%s",
        job.id,
        user_id,
        job.kind,
        job.provider,
        job.credits_used,
    )
    return job


async def dispatch_job(db: Session, job: GenerationJob, call: Callable[[], Awaitable[str]]) -> GenerationJob:
    """Start the provider operation for a pending job and store its handle.

    If the provider call raises, the job is failed, its charge refunded, and the
    original exception re-raised for the caller to report.
    """
    try:
        handle = await call()
    except Exception as e:
        logger.warning("generation.dispatch_failed job=%s provider=%s error=%s", job.id, job.provider, e)
        fail_job(
            db,
            job,
            str(e) or "Failed to start generation",
            f"{provider_label(job)} dispatch failed - auto-refund",
        )
        raise
    job.operation_handle = handle
    db.commit()
    db.refresh(job)
    logger.info("generation.dispatched job=%s provider=%s handle=%s", job.id, job.provider, handle)
    return job
