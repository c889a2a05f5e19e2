from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends
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
from videogen.core.errors import provider_error_response
from videogen.core.security import CurrentUser, get_current_user
from videogen.models.generation_job import JobKind
from videogen.schemas.job import JobEnvelope, JobResponse, MusicGenerateRequest
from videogen.services.artifacts import ArtifactPersister
from videogen.services.credits import MUSIC_CREDIT_COST
from videogen.services.generation import dispatch_job, start_job
from videogen.services.jobs import check_status
from videogen.services.providers.base import ProviderError
from videogen.services.providers.registry import ProviderRegistry

router = APIRouter(dependencies=[Depends(get_current_user)])


@router.post("/music/generate", response_model=JobEnvelope)
async def generate_music(
    body: MusicGenerateRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    providers: ProviderRegistry = Depends(get_provider_registry),
    runner: TaskRunner = Depends(get_task_runner),
):
    job = start_job(
        db,
        user_id=current_user.id,
        kind=JobKind.MUSIC,
        credits=MUSIC_CREDIT_COST,
        description=f"AI music: {body.prompt[:80]}",
        title=body.title or body.prompt[:80],
        prompt=body.prompt,
        params={"duration_seconds": body.duration_seconds},
    )
    try:
        await dispatch_job(
            db,
            job,
            lambda: providers.replicate.create_prediction(prompt=body.prompt, duration_s=body.duration_seconds),
        )
    except ProviderError as e:
        raise provider_error_response(e, "Failed to generate music", "music generation")

    queue_reconcile(db, job, background_tasks, runner)
    return JobEnvelope(job=JobResponse.model_validate(job))


@router.get("/music/{music_id}/status", response_model=JobEnvelope)
async def music_status(
    music_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    providers: ProviderRegistry = Depends(get_provider_registry),
    artifacts: ArtifactPersister = Depends(get_artifact_persister),
):
    job = load_user_job(db, current_user, music_id, JobKind.MUSIC, label="Music")
    try:
        job = await check_status(db, job, providers, artifacts)
    except ProviderError as e:
        raise provider_error_response(e, "Failed to check music status", "music generation")
    return JobEnvelope(job=JobResponse.model_validate(job))
