import enum
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum, Integer, JSON, String, Text
from sqlalchemy.sql import func

from videogen.core.database import Base


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobKind(str, enum.Enum):
    VIDEO = "video"
    IMAGE = "image"
    MUSIC = "music"


class VideoMode(str, enum.Enum):
    AVATAR = "avatar"
    PROMPT = "prompt"
    CUSTOM_AVATAR = "custom_avatar"
    UGC = "ugc"
    EXTENSION = "extension"
    MULTI_SEGMENT = "template_multi"


class Provider(str, enum.Enum):
    HEYGEN = "heygen"
    GOOGLE_VEO = "google_veo"
    NANOBANANA = "nanobanana"
    REPLICATE = "replicate"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(cls, name: str):
    return Enum(cls, values_callable=lambda e: [m.value for m in e], name=name)


class GenerationJob(Base):
    __tablename__ = "generation_jobs"

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid4()))
    user_id = Column(String, index=True, nullable=False)
    kind = Column(_enum(JobKind, "jobkind"), index=True, nullable=False)
    mode = Column(String, index=True, nullable=True)
    provider = Column(_enum(Provider, "jobprovider"), index=True, nullable=False)
    status = Column(_enum(JobStatus, "generationjobstatus"), index=True, default=JobStatus.PENDING, nullable=False)

    title = Column(String, nullable=True)
    prompt = Column(Text, nullable=True)
    script = Column(Text, nullable=True)
    model = Column(String, nullable=True)
    params = Column(JSON, nullable=True)

    operation_handle = Column(String, index=True, nullable=True)
    credits_used = Column(Integer, default=0, nullable=False)

    output_url = Column(Text, nullable=True)
    output_urls = Column(JSON, nullable=True)
    thumbnail_url = Column(Text, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    persisted_at = Column(DateTime(timezone=True), nullable=True)

    parent_job_id = Column(String, index=True, nullable=True)
    extend_count = Column(Integer, default=0)

    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def status_enum(self) -> JobStatus:
        return JobStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return JobStatus(self.status).is_terminal
