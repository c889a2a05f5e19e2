"""Multi-segment Veo jobs.

One job row carries an ordered list of clips in ``params["segments"]``. Each
pass of the ``generate_segments`` task polls the running clips, starts pending
ones up to ``settings.veo_segment_concurrency`` and saves progress with the
same conditional update every other job transition uses, so a cancelled job is
never written back to. When every clip has settled the job completes with the
clips in ``output_urls`` (in segment order) and the clips that failed are
refunded; if none succeeded the whole charge is refunded.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from videogen.core.settings import settings
from videogen.models.generation_job import GenerationJob, JobStatus
from videogen.services.artifacts import ArtifactPersister
from videogen.services.credits import veo_credit_cost
from videogen.services.jobs import (
    RefundDeferredError,
    complete_job,
    fail_if_timed_out,
    fail_job,
    queue_refund_retry,
    refund_amount_once,
    transition_job,
    with_refund_note,
)
from videogen.services.providers.base import ProviderError, ProviderStatus
from videogen.services.providers.registry import ProviderRegistry
from videogen.services.providers.veo import styled_prompt

logger = logging.getLogger(__name__)

PENDING = "pending"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"

ALL_FAILED_MESSAGE = "Video generation failed (API quota or error)."
PARTIAL_REFUND_REASON = "{count} of {total} clips failed - auto-refund"


def build_segment_plan(segments: list[dict[str, Any]], style: str | None = None) -> list[dict[str, Any]]:
    plan = []
    for index, seg in enumerate(segments):
        plan.append(
            {
                "index": index,
                "prompt": styled_prompt(seg["prompt"], style),
                "duration": int(seg["duration"]),
                "image_mode": seg.get("image_mode"),
                "label": seg.get("label") or f"Segment {index + 1}",
                "status": PENDING,
                "operation": None,
                "video_uri": None,
                "error": None,
            }
        )
    return plan


def segments_cost(segments: list[dict[str, Any]], model: str) -> int:
    return sum(veo_credit_cost(seg["duration"], model) for seg in segments)


def segment_progress(job: GenerationJob) -> dict[str, Any]:
    segments = (job.params or {}).get("segments") or []
    completed = sum(1 for s in segments if s.get("status") == COMPLETED)
    return {
        "total_segments": len(segments),
        "completed_segments": completed,
        "failed_segments": sum(1 for s in segments if s.get("status") == FAILED),
        "current_segment_label": f"Clip {completed}/{len(segments)}" if segments else None,
    }


def is_quota_error(error: ProviderError) -> bool:
    return error.status_code == 429 or "RESOURCE_EXHAUSTED" in str(error)


def _segment_request(job: GenerationJob, seg: dict[str, Any], product_images: list[dict[str, str]] | None) -> dict[str, Any]:
    params = job.params or {}
    request: dict[str, Any] = {
        "model": job.model,
        "prompt": seg["prompt"],
        "duration_s": seg["duration"],
        "aspect_ratio": params.get("aspect_ratio") or "16:9",
        "generate_audio": bool(params.get("generate_audio")),
        "resolution": params.get("resolution"),
    }
    if product_images and seg.get("image_mode") == "start_frame":
        request["start_frame"] = product_images[0]
    elif product_images and seg.get("image_mode"):
        request["reference_images"] = product_images[:3]
    return request


async def _poll_running(segments: list[dict[str, Any]], providers: ProviderRegistry) -> None:
    for seg in segments:
        if seg["status"] != RUNNING:
            continue
        try:
            status = await providers.veo.operation_status(seg["operation"])
        except ProviderError as e:
            # Left running; the next pass polls it again.
            logger.warning("segments.poll_failed operation=%s error=%s", seg["operation"], e)
            continue
        if status.completed and status.output_url:
            seg["status"] = COMPLETED
            seg["video_uri"] = status.output_url
        elif status.failed or status.completed:
            seg["status"] = FAILED
            seg["error"] = (status.error or "Veo finished without returning a video")[:500]


async def _start_pending(
    job: GenerationJob,
    segments: list[dict[str, Any]],
    providers: ProviderRegistry,
    product_images: list[dict[str, str]] | None,
) -> None:
    slots = settings.veo_segment_concurrency - sum(1 for s in segments if s["status"] == RUNNING)
    for seg in [s for s in segments if s["status"] == PENDING][: max(0, slots)]:
        try:
            seg["operation"] = await providers.veo.generate(**_segment_request(job, seg, product_images))
        except ProviderError as e:
            if is_quota_error(e):
                # Stays pending until quota frees up or the job times out.
                logger.warning("segments.quota_exhausted job=%s segment=%s", job.id, seg["index"])
                return
            logger.warning("segments.start_failed job=%s segment=%s error=%s", job.id, seg["index"], e)
            seg["status"] = FAILED
            seg["error"] = str(e)[:500]
            continue
        seg["status"] = RUNNING


def refund_failed_segments(db: Session, job: GenerationJob, failed: list[dict[str, Any]], total: int) -> bool:
    amount = segments_cost(failed, job.model)
    reason = PARTIAL_REFUND_REASON.format(count=len(failed), total=total)
    resource_id = f"{job.id}:segments"
    try:
        return refund_amount_once(db, job, amount=amount, resource_id=resource_id, reason=reason)
    except RefundDeferredError:
        logger.warning("segments.refund_deferred job=%s amount=%s", job.id, amount)
    queue_refund_retry(db, {"job_id": job.id, "reason": reason, "amount": amount, "resource_id": resource_id})
    return False


async def _finish(
    db: Session,
    job: GenerationJob,
    segments: list[dict[str, Any]],
    providers: ProviderRegistry,
    artifacts: ArtifactPersister,
) -> None:
    done = sorted((s for s in segments if s["status"] == COMPLETED), key=lambda s: s["index"])
    failed = [s for s in segments if s["status"] == FAILED]
    if not done:
        fail_job(db, job, with_refund_note(job, ALL_FAILED_MESSAGE), "Video generation failed - credits refunded")
        return

    status = ProviderStatus(
        state=JobStatus.COMPLETED,
        output_urls=[s["video_uri"] for s in done],
        duration_seconds=sum(s["duration"] for s in done),
    )
    await complete_job(db, job, status, artifacts, providers)
    if JobStatus(job.status) == JobStatus.COMPLETED and failed:
        refund_failed_segments(db, job, failed, len(segments))


async def advance_segments(
    db: Session,
    job: GenerationJob,
    providers: ProviderRegistry,
    artifacts: ArtifactPersister,
    *,
    product_images: list[dict[str, str]] | None = None,
    now: datetime | None = None,
) -> bool:
    """Run one pass over a multi-segment job. Returns True once the job has settled."""
    if job.is_terminal:
        return True
    if fail_if_timed_out(db, job, now):
        return True

    params = dict(job.params or {})
    segments = [dict(s) for s in params.get("segments") or []]
    await _poll_running(segments, providers)
    await _start_pending(job, segments, providers, product_images)

    params["segments"] = segments
    if not transition_job(db, job, {"params": params}):
        logger.info("segments.skipped job=%s status=%s", job.id, job.status)
        return True

    if any(s["status"] in (PENDING, RUNNING) for s in segments):
        return False
    await _finish(db, job, segments, providers, artifacts)
    return True
