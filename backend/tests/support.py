from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from videogen.core.database import Base
from videogen.models import (  # noqa: F401
    ai_usage,
    credit_balance,
    credit_transaction,
    custom_avatar,
    generation_job,
    profile,
    subscription,
    voiceover,
    webhook_event,
    worker_task,
)
from videogen.models.credit_balance import CreditBalance
from videogen.models.credit_transaction import CreditTransaction
from videogen.models.generation_job import GenerationJob, JobKind, JobStatus
from videogen.models.subscription import Subscription
from videogen.services.jobs import provider_for
from videogen.services.providers.base import ProviderError, ProviderStatus


def memory_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def seed_balance(db, user_id: str, credits: int) -> None:
    db.add(CreditBalance(user_id=user_id, credits_remaining=credits, credits_total=credits))
    db.commit()


def seed_plan(db, user_id: str, plan: str, status: str = "active") -> None:
    db.add(Subscription(user_id=user_id, plan=plan, status=status))
    db.commit()


def balance_of(db, user_id: str) -> int:
    db.expire_all()
    row = db.get(CreditBalance, user_id)
    return int(row.credits_remaining) if row else 0


def transactions_of(db, user_id: str) -> list[CreditTransaction]:
    db.expire_all()
    return (
        db.query(CreditTransaction)
        .filter(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.id)
        .all()
    )


def make_job(
    db,
    *,
    user_id: str = "user-1",
    kind: JobKind = JobKind.VIDEO,
    mode: str | None = "ugc",
    status: JobStatus = JobStatus.PROCESSING,
    credits: int = 16,
    handle: str | None = "operations/op-1",
    model: str | None = None,
    age: timedelta = timedelta(seconds=30),
    params: dict | None = None,
) -> GenerationJob:
    job = GenerationJob(
        user_id=user_id,
        kind=kind,
        mode=mode,
        provider=provider_for(kind, mode),
        status=status,
        title="Test job",
        model=model,
        params=params,
        operation_handle=handle,
        credits_used=credits,
        created_at=datetime.now(timezone.utc) - age,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


class FakeClient:
    """Stands in for one provider client; records calls and replays scripted results."""

    def __init__(self, *, handle: str = "op-1", status: ProviderStatus | None = None, error: Exception | None = None):
        self.handle = handle
        self.status = status or ProviderStatus(state=JobStatus.PROCESSING)
        self.error = error
        self.calls: list[tuple[str, dict]] = []
        # Per-handle statuses and queued start results (a handle or an exception) override the defaults.
        self.statuses: dict[str, ProviderStatus] = {}
        self.start_results: list = []
        self.api_key = "test-key"
        self.avatars: list[dict] = [{"avatar_id": "a1"}]
        self.voices: list[dict] = [{"voice_id": "v1"}]

    async def _start(self, name: str, **kwargs) -> str:
        self.calls.append((name, kwargs))
        if self.start_results:
            result = self.start_results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        if self.error is not None:
            raise self.error
        return self.handle

    async def _status(self, name: str, handle: str) -> ProviderStatus:
        self.calls.append((name, {"handle": handle}))
        if self.error is not None:
            raise self.error
        return self.statuses.get(handle, self.status)

    async def generate(self, **kwargs) -> str:
        return await self._start("generate", **kwargs)

    async def extend(self, **kwargs) -> str:
        return await self._start("extend", **kwargs)

    async def generate_video(self, **kwargs) -> str:
        return await self._start("generate_video", **kwargs)

    async def generate_image(self, **kwargs) -> str:
        return await self._start("generate_image", **kwargs)

    async def create_prediction(self, **kwargs) -> str:
        return await self._start("create_prediction", **kwargs)

    async def create_photo_avatar(self, **kwargs) -> str:
        return await self._start("create_photo_avatar", **kwargs)

    async def operation_status(self, handle: str) -> ProviderStatus:
        return await self._status("operation_status", handle)

    async def video_status(self, handle: str) -> ProviderStatus:
        return await self._status("video_status", handle)

    async def task_status(self, handle: str) -> ProviderStatus:
        return await self._status("task_status", handle)

    async def prediction_status(self, handle: str) -> ProviderStatus:
        return await self._status("prediction_status", handle)

    async def list_avatars(self) -> list[dict]:
        self.calls.append(("list_avatars", {}))
        if self.error is not None:
            raise self.error
        return self.avatars

    async def list_voices(self) -> list[dict]:
        self.calls.append(("list_voices", {}))
        if self.error is not None:
            raise self.error
        return self.voices


class FakeProviders:
    def __init__(self) -> None:
        self.heygen = FakeClient(handle="heygen-video-1")
        self.veo = FakeClient(handle="models/veo/operations/op-1")
        self.nanobanana = FakeClient(handle="image-task-1")
        self.replicate = FakeClient(handle="prediction-1")

    async def aclose(self) -> None:
        return None


class FakeArtifacts:
    def __init__(self, *, fail: bool = False, base_url: str = "https://cdn.test") -> None:
        self.fail = fail
        self.base_url = base_url
        self.persisted: list[dict] = []
        self.removed: list[tuple[str, str]] = []
        self.storage = FakeStorage()

    async def persist(self, provider_url, owner_id, job_id, *, bucket, extension="mp4", content_type="video/mp4", auth_params=None):
        self.persisted.append(
            {"url": provider_url, "owner": owner_id, "job": job_id, "bucket": bucket, "auth_params": auth_params}
        )
        if self.fail:
            return None
        return f"{self.base_url}/{bucket}/{owner_id}/{job_id}.{extension}"

    async def remove(self, owner_id, job_id, *, bucket, extension="mp4"):
        self.removed.append((owner_id, job_id))


class FakeStorage:
    def __init__(self) -> None:
        self.uploads: list[tuple[str, str, int]] = []

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        self.uploads.append((bucket, path, len(data)))
        return f"https://cdn.test/{bucket}/{path}"


def provider_failure(message: str = "Veo API error 500: boom", status_code: int | None = 500) -> ProviderError:
    return ProviderError(message, status_code=status_code)
