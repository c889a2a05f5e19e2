import enum

from sqlalchemy import Column, DateTime, Enum, Integer, JSON, String, Text
from sqlalchemy.sql import func

from videogen.core.database import Base


class TaskStatus(str, enum.Enum):
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    DEAD = "dead"


class WorkerTask(Base):
    __tablename__ = "worker_tasks"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String, index=True, nullable=False)
    payload = Column(JSON, nullable=True)
    status = Column(Enum(TaskStatus, values_callable=lambda e: [m.value for m in e], name="workertaskstatus"), index=True, default=TaskStatus.QUEUED, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=5, nullable=False)
    run_after = Column(DateTime(timezone=True), index=True, nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
