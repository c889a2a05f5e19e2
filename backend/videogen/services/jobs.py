from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from videogen.core.settings import settings
from videogen.models.generation_job import GenerationJob, JobKind, JobStatus, Provider, VideoMode
from videogen.services import task_queue
from videogen.services.artifacts import ArtifactPersister
from videogen.services.credits import VEO_FAST_MODEL, has_refund, refund_credits
from videogen.services.providers.base import ProviderStatus
from videogen.services.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Generation timed out after {minutes} minutes."
CANCEL_MESSAGE = "Cancelled by user."
REFUND_NOTE = " Credits have been refunded."
CANCEL_REJECTED_MESSAGE = "Only pending or processing jobs can be cancelled"
NO_OUTPUT_MESSAGE = "{provider} finished without returning an output"

NON_TERMINAL = (JobStatus.PENDING, JobStatus.PROCESSING)
PERSIST_RETRY_DELAY_S = 30
REFUND_RETRY_DELAY_S = 60


class JobStateError(RuntimeError):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    # SQLite hands back naive datetimes; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def provider_for(kind: JobKind | str, mode: VideoMode | str | None = None) -> Provider:
    kind = JobKind(kind)
    if kind == JobKind.IMAGE:
        return Provider.NANOBANANA
    if kind == JobKind.MUSIC:
        return Provider.REPLICATE
    if kind == JobKind.VIDEO:
        if mode is None:
            raise ValueError("video jobs need a mode")
        mode = VideoMode(mode)
        if mode in (VideoMode.AVATAR, VideoMode.PROMPT, VideoMode.CUSTOM_AVATAR):
            return Provider.HEYGEN
        if mode in (VideoMode.UGC, VideoMode.EXTENSION, VideoMode.MULTI_SEGMENT):
            return Provider.GOOGLE_VEO
    raise ValueError(f"No provider for kind={kind} mode={mode}")


def resource_type_for(job: GenerationJob) -> str:
    kind = JobKind(job.kind)
    if kind == JobKind.IMAGE:
        return "nanobanana_image"
    if kind == JobKind.MUSIC:
        return "ai_music"
    if job.mode == VideoMode.MULTI_SEGMENT.value:
        return "veo_template_multi"
    if Provider(job.provider) == Provider.GOOGLE_VEO:
        return "veo_video"
    return "heygen_video"


def provider_label(job: GenerationJob) -> str:
    return {
        Provider.HEYGEN: "HeyGen",
        Provider.GOOGLE_VEO: "Veo",
        Provider.NANOBANANA: "Image",
        Provider.REPLICATE: "Music",
    }[Provider(job.provider)]


def with_refund_note(job: GenerationJob, message: str) -> str:
    if int(job.credits_used or 0) > 0:
        return message + REFUND_NOTE
    return message


def timeout_for(job: GenerationJob) -> timedelta:
    if Provider(job.provider) == Provider.GOOGLE_VEO:
        seconds = settings.job_timeout_veo_fast_s if job.model == VEO_FAST_MODEL else settings.job_timeout_veo_standard_s
        if job.mode == VideoMode.MULTI_SEGMENT.value:
            # Segments run in waves of veo_segment_concurrency.
            count = len((job.params or {}).get("segments") or []) or 1
            seconds *= math.ceil(count / settings.veo_segment_concurrency)
        return timedelta(seconds=seconds)
    return timedelta(seconds=settings.job_timeout_default_s)


def artifact_target(job: GenerationJob) -> tuple[str, str, str]:
    """(bucket, extension, content type) for a job's output."""
    kind = JobKind(job.kind)
    if kind == JobKind.IMAGE:
        fmt = str((job.params or {}).get("output_format") or "png").lower()
        content_type = "image/jpeg" if fmt in ("jpg", "jpeg") else f"image/{fmt}"
        return settings.storage_bucket_images, fmt, content_type
    if kind == JobKind.MUSIC:
        return settings.storage_bucket_music, "mp3", "audio/mpeg"
    return settings.storage_bucket_videos, "mp4", "video/mp4"


async def fetch_provider_status(job: GenerationJob, providers: ProviderRegistry) -> ProviderStatus:
    provider = Provider(job.provider)
    handle = job.operation_handle
    if provider == Provider.HEYGEN:
        return await providers.heygen.video_status(handle)
    if provider == Provider.GOOGLE_VEO:
        return await providers.veo.operation_status(handle)
    if provider == Provider.NANOBANANA:
        return await providers.nanobanana.task_status(handle)
    if provider == Provider.REPLICATE:
        return await providers.replicate.prediction_status(handle)
    raise ValueError(f"Unknown provider {provider}")


class RefundDeferredError(RuntimeError):
    """The ledger write for a job refund failed; the claim was released for a retry."""


def _claim_refund(db: Session, job: GenerationJob) -> bool:
    claimed = db.execute(
        update(GenerationJob)
        .where(GenerationJob.id == job.id, GenerationJob.refunded_at.is_(None))
        .values(refunded_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return claimed.rowcount == 1


def refund_job_once(db: Session, job: GenerationJob, reason: str) -> bool:
    """Refund a job's charge, at most once.

    The ``refunded_at`` claim and the refund row commit in one transaction, so
    the job is never marked refunded without a matching ledger entry. Returns
    True when this call wrote the refund. Raises ``RefundDeferredError`` when the
    ledger write failed.
    """
    amount = int(job.credits_used or 0)
    if amount <= 0:
        return False
    if not _claim_refund(db, job):
        db.rollback()
        logger.info("jobs.refund_skipped job=%s reason=already_claimed", job.id)
        return False
    if refund_credits(
        db,
        user_id=job.user_id,
        amount=amount,
        resource_id=job.id,
        reason=reason,
        resource_type=resource_type_for(job),
    ):
        return True

    db.rollback()
    if has_refund(db, job.id):
        # Refunded earlier without the job being stamped.
        _claim_refund(db, job)
        db.commit()
        return False
    raise RefundDeferredError(f"Refund for job {job.id} was not recorded")


def refund_amount_once(db: Session, job: GenerationJob, *, amount: int, resource_id: str, reason: str) -> bool:
    """Refund part of a job's charge under its own resource id.

    Returns False when that refund already exists. Raises ``RefundDeferredError``
    when the ledger write failed.
    """
    if int(amount or 0) <= 0:
        return False
    if refund_credits(
        db,
        user_id=job.user_id,
        amount=amount,
        resource_id=resource_id,
        reason=reason,
        resource_type=resource_type_for(job),
    ):
        return True
    db.rollback()
    if has_refund(db, resource_id):
        return False
    raise RefundDeferredError(f"Refund {resource_id} for job {job.id} was not recorded")


def queue_refund_retry(db: Session, payload: dict) -> None:
    try:
        task_queue.enqueue(db, task_queue.REFUND_JOB, payload, delay_s=REFUND_RETRY_DELAY_S)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("jobs.refund_retry_enqueue_failed job=%s", payload.get("job_id"))


def _refund_job(db: Session, job: GenerationJob, reason: str) -> bool:
    try:
        return refund_job_once(db, job, reason)
    except RefundDeferredError:
        logger.warning("jobs.refund_deferred job=%s user=%s amount=%s", job.id, job.user_id, job.credits_used)
    queue_refund_retry(db, {"job_id": job.id, "reason": reason})
    return False


def transition_job(db: Session, job: GenerationJob, values: dict) -> bool:
    """Apply ``values`` only while the job is still non-terminal. Returns False if it already settled."""
    result = db.execute(
        update(GenerationJob)
        .where(GenerationJob.id == job.id, GenerationJob.status.in_(NON_TERMINAL))
        .values(**values, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(job)
    return result.rowcount == 1


def fail_job(db: Session, job: GenerationJob, message: str, refund_reason: str) -> bool:
    """Move a non-terminal job to failed and refund its charge once. Returns False if it had already settled."""
    if not transition_job(db, job, {"status": JobStatus.FAILED, "error_message": message}):
        return False
    logger.info("jobs.failed job=%s provider=%s message=%s", job.id, job.provider, message[:200])
    _refund_job(db, job, refund_reason)
    db.refresh(job)
    return True


def cancel_job(db: Session, job: GenerationJob) -> GenerationJob:
    if job.is_terminal:
        raise JobStateError(CANCEL_REJECTED_MESSAGE)
    if not fail_job(db, job, with_refund_note(job, CANCEL_MESSAGE), "Cancelled by user - auto-refund"):
        raise JobStateError(CANCEL_REJECTED_MESSAGE)
    return job


async def persist_outputs(
    job: GenerationJob,
    urls: list[str],
    artifacts: ArtifactPersister,
    providers: ProviderRegistry,
) -> tuple[list[str], bool]:
    """Copy each provider URL to durable storage; keeps the provider URL where a copy fails."""
    bucket, extension, content_type = artifact_target(job)
    auth_params = None
    if Provider(job.provider) == Provider.GOOGLE_VEO and providers.veo.api_key:
        auth_params = {"key": providers.veo.api_key}

    final: list[str] = []
    all_durable = True
    for index, url in enumerate(urls):
        object_id = job.id if len(urls) == 1 else f"{job.id}_{index}"
        durable = await artifacts.persist(
            url,
            job.user_id,
            object_id,
            bucket=bucket,
            extension=extension,
            content_type=content_type,
            auth_params=auth_params,
        )
        if durable is None:
            all_durable = False
            final.append(url)
        else:
            final.append(durable)
    return final, all_durable


async def complete_job(
    db: Session,
    job: GenerationJob,
    status: ProviderStatus,
    artifacts: ArtifactPersister,
    providers: ProviderRegistry,
) -> GenerationJob:
    urls = status.output_urls or ([status.output_url] if status.output_url else [])
    if not urls:
        fail_job(
            db,
            job,
            NO_OUTPUT_MESSAGE.format(provider=provider_label(job)),
            f"{provider_label(job)} returned no output - auto-refund",
        )
        return job
    final, all_durable = await persist_outputs(job, urls, artifacts, providers)
    if not all_durable:
        logger.warning("jobs.persist_fallback job=%s using=provider_url", job.id)

    values: dict = {
        "status": JobStatus.COMPLETED,
        "output_url": final[0] if final else None,
        "error_message": None,
    }
    if JobKind(job.kind) == JobKind.IMAGE or len(final) > 1:
        values["output_urls"] = final
    if status.thumbnail_url:
        values["thumbnail_url"] = status.thumbnail_url
    if status.duration_seconds:
        values["duration_seconds"] = status.duration_seconds
    if all_durable and final:
        values["persisted_at"] = utcnow()

    if not transition_job(db, job, values):
        # Cancelled while the download was running: drop what we uploaded.
        if all_durable and final:
            bucket, extension, _ = artifact_target(job)
            for index in range(len(final)):
                object_id = job.id if len(final) == 1 else f"{job.id}_{index}"
                await artifacts.remove(job.user_id, object_id, bucket=bucket, extension=extension)
        logger.info("jobs.complete_skipped job=%s status=%s", job.id, job.status)
        return job

    logger.info("jobs.completed job=%s provider=%s persisted=%s", job.id, job.provider, all_durable)
    if final and not all_durable:
        task_queue.enqueue(
            db,
            task_queue.PERSIST_ARTIFACT,
            {"job_id": job.id, "provider_urls": urls},
            delay_s=PERSIST_RETRY_DELAY_S,
        )
    return job


def fail_if_timed_out(db: Session, job: GenerationJob, now: datetime | None = None) -> bool:
    timeout = timeout_for(job)
    created_at = _as_utc(job.created_at)
    if created_at is None or (now or utcnow()) - created_at <= timeout:
        return False
    minutes = round(timeout.total_seconds() / 60)
    fail_job(
        db,
        job,
        with_refund_note(job, TIMEOUT_MESSAGE.format(minutes=minutes)),
        "Generation timed out - auto-refund",
    )
    return True


async def check_status(
    db: Session,
    job: GenerationJob,
    providers: ProviderRegistry,
    artifacts: ArtifactPersister,
    now: datetime | None = None,
) -> GenerationJob:
    """Reconcile one job with its provider and return the up-to-date row.

    Terminal jobs are returned untouched without contacting the provider.
    Provider errors while polling propagate to the caller; the job stays as it was.
    """
    if job.is_terminal:
        return job

    if fail_if_timed_out(db, job, now):
        return job

    if not job.operation_handle:
        return job

    status = await fetch_provider_status(job, providers)

    if status.failed:
        fail_job(
            db,
            job,
            status.error or f"{provider_label(job)} generation failed",
            f"{provider_label(job)} generation failed - auto-refund",
        )
        return job

    if status.completed:
        return await complete_job(db, job, status, artifacts, providers)

    if status.state == JobStatus.PROCESSING and JobStatus(job.status) != JobStatus.PROCESSING:
        transition_job(db, job, {"status": JobStatus.PROCESSING})
    return job
