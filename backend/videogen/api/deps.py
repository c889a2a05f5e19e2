from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import BackgroundTasks, Request
from sqlalchemy.orm import Session

from videogen.core.errors import APIError, not_found
from videogen.core.security import CurrentUser
from videogen.models.generation_job import GenerationJob, JobKind
from videogen.services.artifacts import ArtifactPersister, get_artifacts
from videogen.services.cache import ProviderCatalog
from videogen.services.llm.client import LLMDisabledError, OpenAICompatibleLLM, get_llm_client
from videogen.services.providers.registry import ProviderRegistry, get_providers
from videogen.services.storage import Storage, get_storage
from videogen.services.task_queue import RunSummary
from videogen.services.tasks import run_pending_tasks, schedule_reconcile
from videogen.services.tts import SpeechSynthesizer, TTSDisabledError, get_speech_synthesizer

TaskRunner = Callable[..., Awaitable[RunSummary]]


def get_provider_registry() -> ProviderRegistry:
    return get_providers()


def get_artifact_persister() -> ArtifactPersister:
    return get_artifacts()


def get_catalog(request: Request) -> ProviderCatalog:
    return request.app.state.provider_catalog


def get_llm() -> OpenAICompatibleLLM:
    try:
        return get_llm_client()
    except LLMDisabledError as e:
        raise APIError(503, str(e))


def get_object_storage() -> Storage:
    return get_storage()


def get_speech() -> SpeechSynthesizer:
    try:
        return get_speech_synthesizer()
    except TTSDisabledError as e:
        raise APIError(503, str(e))


def get_task_runner() -> TaskRunner:
    return run_pending_tasks


def load_user_job(
    db: Session,
    user: CurrentUser,
    job_id: str,
    kind: JobKind | None = None,
    label: str = "Video",
) -> GenerationJob:
    query = db.query(GenerationJob).filter(GenerationJob.id == job_id, GenerationJob.user_id == user.id)
    if kind is not None:
        query = query.filter(GenerationJob.kind == kind)
    job = query.first()
    if job is None:
        raise not_found(f"{label} not found")
    return job


def queue_reconcile(db: Session, job: GenerationJob, background_tasks: BackgroundTasks, runner: TaskRunner) -> None:
    """Hand the job to the durable task queue and kick the runner once the response is sent."""
    schedule_reconcile(db, job)
    background_tasks.add_task(runner)
