from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from videogen.api.deps import (
    TaskRunner,
    get_artifact_persister,
    get_provider_registry,
    get_task_runner,
    load_user_job,
    queue_reconcile,
)
from videogen.core.database import get_db
from videogen.core.errors import bad_request, not_found, plan_required, provider_error_response
from videogen.core.security import CurrentUser, get_current_user
from videogen.models.generation_job import GenerationJob, JobKind, JobStatus, Provider, VideoMode
from videogen.schemas.job import (
    JobEnvelope,
    JobListResponse,
    JobResponse,
    MultiSegmentRequest,
    MultiSegmentStatus,
    VeoCancelRequest,
    VeoExtendRequest,
    VeoGenerateRequest,
)
from videogen.services import plans, task_queue
from videogen.services.artifacts import ArtifactPersister
from videogen.services.credits import VEO_STANDARD_MODEL, veo_credit_cost
from videogen.services.generation import dispatch_job, start_job
from videogen.services.jobs import JobStateError, cancel_job, check_status, transition_job
from videogen.services.providers.base import ProviderError
from videogen.services.providers.registry import ProviderRegistry
from videogen.services.providers.veo import styled_prompt
from videogen.services.quotas import require_batch_creation, require_veo_access, user_plan
from videogen.services.segments import build_segment_plan, segment_progress, segments_cost

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(get_current_user)])

PROVIDER_LABEL = "Google Veo"
EXTEND_PLAN_MESSAGE = "Video extension requires a Creator or Enterprise plan."
DEFAULT_EXTEND_SECONDS = 8


@router.post("/veo/generate", response_model=JobEnvelope)
async def generate_veo_video(
    body: VeoGenerateRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    providers: ProviderRegistry = Depends(get_provider_registry),
    runner: TaskRunner = Depends(get_task_runner),
):
    plan = require_veo_access(db, current_user.id)

    cost = veo_credit_cost(body.duration, body.model)
    job = start_job(
        db,
        user_id=current_user.id,
        kind=JobKind.VIDEO,
        mode=VideoMode.UGC,
        credits=cost,
        description=f"Veo video: {body.title}",
        title=body.title,
        prompt=body.prompt,
        model=body.model,
        params={
            "duration": body.duration,
            "aspect_ratio": body.aspect_ratio,
            "negative_prompt": body.negative_prompt,
            "generate_audio": body.generate_audio,
            "style": body.style,
            "reference_image_count": len(body.reference_images or []),
            "resolution": plans.max_veo_resolution(plan),
        },
    )
    try:
        await dispatch_job(
            db,
            job,
            lambda: providers.veo.generate(
                model=body.model,
                prompt=styled_prompt(body.prompt, body.style),
                duration_s=body.duration,
                aspect_ratio=body.aspect_ratio,
                negative_prompt=body.negative_prompt,
                reference_images=[img.model_dump() for img in body.reference_images or []],
                start_frame=body.start_frame.model_dump() if body.start_frame else None,
                end_frame=body.end_frame.model_dump() if body.end_frame else None,
                generate_audio=body.generate_audio,
                resolution=plans.max_veo_resolution(plan),
            ),
        )
    except ProviderError as e:
        raise provider_error_response(e, "Failed to start video generation", PROVIDER_LABEL)

    queue_reconcile(db, job, background_tasks, runner)
    return JobEnvelope(job=JobResponse.model_validate(job))


@router.post("/veo/multi-generate", response_model=MultiSegmentStatus)
async def generate_multi_segment_video(
    body: MultiSegmentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    runner: TaskRunner = Depends(get_task_runner),
):
    plan = require_batch_creation(db, current_user.id)

    segment_plan = build_segment_plan([seg.model_dump() for seg in body.segments], body.style)
    cost = segments_cost(segment_plan, body.model)
    job = start_job(
        db,
        user_id=current_user.id,
        kind=JobKind.VIDEO,
        mode=VideoMode.MULTI_SEGMENT,
        credits=cost,
        description=f"Template video: {body.title} ({len(segment_plan)} segments)",
        title=body.title,
        prompt=" | ".join(seg.prompt for seg in body.segments),
        model=body.model,
        params={
            "template_id": body.template_id,
            "aspect_ratio": body.aspect_ratio,
            "generate_audio": body.generate_audio,
            "style": body.style,
            "resolution": plans.max_veo_resolution(plan),
            "product_image_count": len(body.product_images or []),
            "segments": segment_plan,
        },
    )
    transition_job(db, job, {"status": JobStatus.PROCESSING})
    task_queue.enqueue(
        db,
        task_queue.GENERATE_SEGMENTS,
        {"job_id": job.id, "product_images": [img.model_dump() for img in body.product_images or []]},
    )
    background_tasks.add_task(runner)
    logger.info("veo.multi_created job=%s user=%s segments=%s credits=%s", job.id, current_user.id, len(segment_plan), cost)
    return MultiSegmentStatus(job=JobResponse.model_validate(job), **segment_progress(job))


@router.get("/veo/multi/{job_id}", response_model=MultiSegmentStatus)
async def multi_segment_status(
    job_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    job = load_user_job(db, current_user, job_id, JobKind.VIDEO, label="Job")
    if job.mode != VideoMode.MULTI_SEGMENT.value:
        raise not_found("Job not found")
    return MultiSegmentStatus(job=JobResponse.model_validate(job), **segment_progress(job))


@router.post("/veo/extend", response_model=JobEnvelope)
async def extend_veo_video(
    body: VeoExtendRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    providers: ProviderRegistry = Depends(get_provider_registry),
    runner: TaskRunner = Depends(get_task_runner),
):
    if not plans.can_use_veo(user_plan(db, current_user.id)):
        raise plan_required(EXTEND_PLAN_MESSAGE)

    parent = (
        db.query(GenerationJob)
        .filter(
            GenerationJob.id == body.video_id,
            GenerationJob.user_id == current_user.id,
            GenerationJob.provider == Provider.GOOGLE_VEO,
            GenerationJob.status == JobStatus.COMPLETED,
        )
        .first()
    )
    if parent is None:
        raise not_found("Video not found or not completed")
    if not parent.output_url:
        raise bad_request("Video has no URL to extend from")
    if parent.mode == VideoMode.MULTI_SEGMENT.value:
        raise bad_request("Multi-clip videos cannot be extended")

    duration = body.duration or DEFAULT_EXTEND_SECONDS
    model = parent.model or VEO_STANDARD_MODEL
    cost = veo_credit_cost(duration, model)
    job = start_job(
        db,
        user_id=current_user.id,
        kind=JobKind.VIDEO,
        mode=VideoMode.EXTENSION,
        credits=cost,
        description=f"Veo extend: {parent.title}",
        title=f"{parent.title} (Extended)",
        prompt=body.prompt,
        model=model,
        params={**(parent.params or {}), "duration": duration},
        parent_job_id=parent.id,
        extend_count=int(parent.extend_count or 0) + 1,
    )
    try:
        await dispatch_job(
            db,
            job,
            lambda: providers.veo.extend(model=model, prompt=body.prompt, video_uri=parent.output_url, duration_s=duration),
        )
    except ProviderError as e:
        raise provider_error_response(e, "Failed to extend video", PROVIDER_LABEL)

    queue_reconcile(db, job, background_tasks, runner)
    return JobEnvelope(job=JobResponse.model_validate(job))


@router.get("/veo/status/{operation_name:path}", response_model=JobEnvelope)
async def veo_status(
    operation_name: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    providers: ProviderRegistry = Depends(get_provider_registry),
    artifacts: ArtifactPersister = Depends(get_artifact_persister),
):
    job = (
        db.query(GenerationJob)
        .filter(
            GenerationJob.operation_handle == operation_name,
            GenerationJob.user_id == current_user.id,
            GenerationJob.provider == Provider.GOOGLE_VEO,
        )
        .first()
    )
    if job is None:
        raise not_found("Video not found")
    try:
        job = await check_status(db, job, providers, artifacts)
    except ProviderError as e:
        raise provider_error_response(e, "Failed to check video status", PROVIDER_LABEL)
    return JobEnvelope(job=JobResponse.model_validate(job))


@router.post("/veo/cancel", response_model=JobEnvelope)
async def cancel_veo_video(
    body: VeoCancelRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    job = load_user_job(db, current_user, body.video_id, JobKind.VIDEO)
    if Provider(job.provider) != Provider.GOOGLE_VEO:
        raise not_found("Video not found")
    try:
        cancel_job(db, job)
    except JobStateError as e:
        raise bad_request(str(e))
    logger.info("veo.cancelled job=%s user=%s refunded=%s", job.id, current_user.id, job.credits_used)
    return JobEnvelope(job=JobResponse.model_validate(job))


@router.get("/veo/list", response_model=JobListResponse)
async def list_veo_videos(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    query = db.query(GenerationJob).filter(
        GenerationJob.user_id == current_user.id,
        GenerationJob.provider == Provider.GOOGLE_VEO,
    )
    total = query.count()
    rows = query.order_by(GenerationJob.created_at.desc()).offset(offset).limit(limit).all()
    return JobListResponse(
        items=[JobResponse.model_validate(r) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
    )
