from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from videogen.api.deps import TaskRunner, get_artifact_persister, get_provider_registry, get_task_runner, queue_reconcile
from videogen.core.database import get_db
from videogen.core.errors import not_found, provider_error_response
from videogen.core.security import CurrentUser, get_current_user
from videogen.models.generation_job import GenerationJob, JobKind
from videogen.schemas.job import ImageGenerateRequest, JobEnvelope, JobResponse
from videogen.services.artifacts import ArtifactPersister
from videogen.services.credits import image_credit_cost
from videogen.services.generation import dispatch_job, start_job
from videogen.services.jobs import check_status
from videogen.services.providers.base import ProviderError
from videogen.services.providers.registry import ProviderRegistry

router = APIRouter(dependencies=[Depends(get_current_user)])

PROVIDER_LABEL = "image generation"


@router.post("/images/generate", response_model=JobEnvelope)
async def generate_image(
    body: ImageGenerateRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    providers: ProviderRegistry = Depends(get_provider_registry),
    runner: TaskRunner = Depends(get_task_runner),
):
    cost = image_credit_cost(body.resolution, body.num_images)
    job = start_job(
        db,
        user_id=current_user.id,
        kind=JobKind.IMAGE,
        credits=cost,
        description=f"Image generation ({body.resolution}, {body.num_images} image{'s' if body.num_images > 1 else ''})",
        prompt=body.prompt,
        params={
            "resolution": body.resolution,
            "aspect_ratio": body.aspect_ratio,
            "output_format": body.output_format,
            "num_images": body.num_images,
        },
    )
    try:
        await dispatch_job(
            db,
            job,
            lambda: providers.nanobanana.generate_image(
                prompt=body.prompt,
                resolution=body.resolution,
                aspect_ratio=body.aspect_ratio,
                output_format=body.output_format,
                num_images=body.num_images,
                image_urls=body.image_urls,
            ),
        )
    except ProviderError as e:
        raise provider_error_response(e, "Failed to start image generation", PROVIDER_LABEL)

    queue_reconcile(db, job, background_tasks, runner)
    return JobEnvelope(job=JobResponse.model_validate(job))


@router.get("/images/status/{task_id}", response_model=JobEnvelope)
async def image_status(
    task_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    providers: ProviderRegistry = Depends(get_provider_registry),
    artifacts: ArtifactPersister = Depends(get_artifact_persister),
):
    job = (
        db.query(GenerationJob)
        .filter(
            GenerationJob.operation_handle == task_id,
            GenerationJob.user_id == current_user.id,
            GenerationJob.kind == JobKind.IMAGE,
        )
        .first()
    )
    if job is None:
        raise not_found("Image task not found")
    try:
        job = await check_status(db, job, providers, artifacts)
    except ProviderError as e:
        raise provider_error_response(e, "Failed to check image status", PROVIDER_LABEL)
    return JobEnvelope(job=JobResponse.model_validate(job))
