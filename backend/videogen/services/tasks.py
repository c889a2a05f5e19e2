from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from videogen.core.database import SessionLocal
from videogen.core.settings import settings
from videogen.models.generation_job import GenerationJob, JobKind, JobStatus
from videogen.services import task_queue
from videogen.services.artifacts import ArtifactPersister, get_artifacts
from videogen.services.jobs import check_status, persist_outputs, refund_amount_once, refund_job_once
from videogen.services.providers.registry import ProviderRegistry, get_providers
from videogen.services.segments import advance_segments
from videogen.services.task_queue import Handler, Reschedule, RunSummary

logger = logging.getLogger(__name__)


class ArtifactPersistError(RuntimeError):
    pass


def build_handlers(providers: ProviderRegistry, artifacts: ArtifactPersister) -> dict[str, Handler]:
    async def reconcile_job(db: Session, payload: dict[str, Any]) -> Reschedule | None:
        job = db.get(GenerationJob, str(payload.get("job_id") or ""))
        if job is None or job.is_terminal:
            return None
        await check_status(db, job, providers, artifacts)
        if job.is_terminal:
            return None
        return Reschedule(settings.reconcile_poll_interval_s)

    async def persist_artifact(db: Session, payload: dict[str, Any]) -> None:
        job = db.get(GenerationJob, str(payload.get("job_id") or ""))
        if job is None or JobStatus(job.status) != JobStatus.COMPLETED or job.persisted_at is not None:
            return None
        urls = [u for u in payload.get("provider_urls") or [] if isinstance(u, str) and u]
        if not urls:
            return None
        final, all_durable = await persist_outputs(job, urls, artifacts, providers)
        if not all_durable:
            raise ArtifactPersistError(f"Could not persist artifact for job {job.id}")

        values: dict[str, Any] = {"output_url": final[0], "persisted_at": datetime.now(timezone.utc)}
        if JobKind(job.kind) == JobKind.IMAGE or len(final) > 1:
            values["output_urls"] = final
        db.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job.id, GenerationJob.status == JobStatus.COMPLETED)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        logger.info("tasks.artifact_persisted job=%s", job.id)
        return None

    async def generate_segments(db: Session, payload: dict[str, Any]) -> Reschedule | None:
        job = db.get(GenerationJob, str(payload.get("job_id") or ""))
        if job is None or job.is_terminal:
            return None
        settled = await advance_segments(
            db, job, providers, artifacts, product_images=payload.get("product_images") or None
        )
        if settled:
            return None
        return Reschedule(settings.reconcile_poll_interval_s)

    async def refund_job(db: Session, payload: dict[str, Any]) -> None:
        # RefundDeferredError propagates so the queue backs off and retries.
        job = db.get(GenerationJob, str(payload.get("job_id") or ""))
        if job is None:
            return None
        reason = str(payload.get("reason") or "Generation failed - auto-refund")
        if payload.get("resource_id"):
            refund_amount_once(
                db, job, amount=int(payload.get("amount") or 0), resource_id=str(payload["resource_id"]), reason=reason
            )
        else:
            refund_job_once(db, job, reason)
        logger.info("tasks.refund_retried job=%s", job.id)
        return None

    return {
        task_queue.RECONCILE_JOB: reconcile_job,
        task_queue.PERSIST_ARTIFACT: persist_artifact,
        task_queue.GENERATE_SEGMENTS: generate_segments,
        task_queue.REFUND_JOB: refund_job,
    }


def schedule_reconcile(db: Session, job: GenerationJob) -> None:
    task_queue.enqueue(db, task_queue.RECONCILE_JOB, {"job_id": job.id})


async def run_pending_tasks(limit: int = 20) -> RunSummary:
    """Entry point for BackgroundTasks and the internal cron endpoint."""
    db = SessionLocal()
    try:
        handlers = build_handlers(get_providers(), get_artifacts())
        return await task_queue.run_due_tasks(db, handlers, limit=limit)
    finally:
        db.close()
