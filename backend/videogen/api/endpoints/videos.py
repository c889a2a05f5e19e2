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
from videogen.core.errors import bad_request, not_found, provider_error_response
from videogen.core.security import CurrentUser, get_current_user
from videogen.models.custom_avatar import CustomAvatar
from videogen.models.generation_job import GenerationJob, JobKind, VideoMode
from videogen.schemas.job import JobEnvelope, JobListResponse, JobResponse, VideoCreate
from videogen.services.artifacts import ArtifactPersister
from videogen.services.generation import dispatch_job, start_job
from videogen.services.jobs import JobStateError, artifact_target, cancel_job, check_status
from videogen.services.providers.base import ProviderError
from videogen.services.providers.registry import ProviderRegistry
from videogen.services.quotas import require_video_quota

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(get_current_user)])

DELETE_ACTIVE_MESSAGE = "Cancel the video first before deleting it."


def _dimension(aspect_ratio: str) -> dict[str, int]:
    if aspect_ratio == "9:16":
        return {"width": 720, "height": 1280}
    return {"width": 1280, "height": 720}


@router.post("/videos", response_model=JobEnvelope)
async def create_video(
    body: VideoCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    providers: ProviderRegistry = Depends(get_provider_registry),
    runner: TaskRunner = Depends(get_task_runner),
):
    require_video_quota(db, current_user.id)

    talking_photo_id = None
    if body.mode == VideoMode.CUSTOM_AVATAR:
        avatar = (
            db.query(CustomAvatar)
            .filter(CustomAvatar.id == body.custom_avatar_id, CustomAvatar.user_id == current_user.id)
            .first()
        )
        if avatar is None:
            raise not_found("Custom avatar not found")
        talking_photo_id = avatar.heygen_avatar_id

    job = start_job(
        db,
        user_id=current_user.id,
        kind=JobKind.VIDEO,
        mode=body.mode,
        title=body.title,
        script=body.script,
        params={
            "voice_id": body.voice_id,
            "avatar_id": body.avatar_id,
            "custom_avatar_id": body.custom_avatar_id,
            "aspect_ratio": body.aspect_ratio,
        },
    )
    try:
        await dispatch_job(
            db,
            job,
            lambda: providers.heygen.generate_video(
                script=body.script,
                voice_id=body.voice_id,
                avatar_id=body.avatar_id,
                talking_photo_id=talking_photo_id,
                dimension=_dimension(body.aspect_ratio),
            ),
        )
    except ProviderError as e:
        raise provider_error_response(e, "Failed to generate video", "HeyGen")

    queue_reconcile(db, job, background_tasks, runner)
    return JobEnvelope(job=JobResponse.model_validate(job))


@router.get("/videos", response_model=JobListResponse)
async def list_videos(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    query = db.query(GenerationJob).filter(
        GenerationJob.user_id == current_user.id,
        GenerationJob.kind == JobKind.VIDEO,
    )
    total = query.count()
    rows = query.order_by(GenerationJob.created_at.desc()).offset(offset).limit(limit).all()
    return JobListResponse(
        items=[JobResponse.model_validate(r) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/videos/{video_id}", response_model=JobEnvelope)
async def get_video(video_id: str, db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    job = load_user_job(db, current_user, video_id, JobKind.VIDEO)
    return JobEnvelope(job=JobResponse.model_validate(job))


@router.get("/videos/{video_id}/status", response_model=JobEnvelope)
async def video_status(
    video_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    providers: ProviderRegistry = Depends(get_provider_registry),
    artifacts: ArtifactPersister = Depends(get_artifact_persister),
):
    job = load_user_job(db, current_user, video_id, JobKind.VIDEO)
    try:
        job = await check_status(db, job, providers, artifacts)
    except ProviderError as e:
        raise provider_error_response(e, "Failed to check video status", "HeyGen")
    return JobEnvelope(job=JobResponse.model_validate(job))


@router.post("/videos/{video_id}/cancel", response_model=JobEnvelope)
async def cancel_video(video_id: str, db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    job = load_user_job(db, current_user, video_id, JobKind.VIDEO)
    try:
        cancel_job(db, job)
    except JobStateError as e:
        raise bad_request(str(e))
    logger.info("videos.cancelled job=%s user=%s", job.id, current_user.id)
    return JobEnvelope(job=JobResponse.model_validate(job))


@router.delete("/videos/{video_id}")
async def delete_video(
    video_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    artifacts: ArtifactPersister = Depends(get_artifact_persister),
) -> dict:
    job = load_user_job(db, current_user, video_id, JobKind.VIDEO)
    if not job.is_terminal:
        raise bad_request(DELETE_ACTIVE_MESSAGE)
    if job.persisted_at is not None:
        bucket, extension, _ = artifact_target(job)
        await artifacts.remove(job.user_id, job.id, bucket=bucket, extension=extension)
    db.delete(job)
    db.commit()
    logger.info("videos.deleted job=%s user=%s", video_id, current_user.id)
    return {"deleted": True}
