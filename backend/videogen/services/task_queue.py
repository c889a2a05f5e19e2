"""Database-backed task queue.

Tasks are rows in ``worker_tasks``. A runner claims due rows with a conditional
UPDATE (so two runners never execute the same task), runs the registered
handler and records the outcome. Failures are retried with exponential backoff
plus jitter until ``max_attempts`` is reached, after which the task is marked
dead and left for inspection.

Runners are triggered after a request via FastAPI ``BackgroundTasks`` and by
the internal ``/api/internal/tasks/run`` endpoint for cron.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from videogen.core.settings import settings
from videogen.models.worker_task import TaskStatus, WorkerTask

logger = logging.getLogger(__name__)

RECONCILE_JOB = "reconcile_job"
PERSIST_ARTIFACT = "persist_artifact"
REFUND_JOB = "refund_job"
GENERATE_SEGMENTS = "generate_segments"

STALE_RUNNING_AFTER_S = 15 * 60


@dataclass(frozen=True)
class Reschedule:
    """Handler result: run again after ``delay_s`` without counting a failed attempt."""

    delay_s: float


Handler = Callable[[Session, dict[str, Any]], Awaitable["Reschedule | None"]]


@dataclass
class RunSummary:
    claimed: int = 0
    done: int = 0
    rescheduled: int = 0
    retried: int = 0
    dead: int = 0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def backoff_delay_s(attempts: int, base_s: float | None = None, max_s: float | None = None) -> float:
    base = settings.task_backoff_base_s if base_s is None else base_s
    cap = settings.task_backoff_max_s if max_s is None else max_s
    delay = base * (2 ** (max(1, attempts) - 1)) + random.random() * 0.25 * base
    return min(cap, delay)


def enqueue(
    db: Session,
    kind: str,
    payload: dict[str, Any],
    *,
    delay_s: float = 0,
    max_attempts: int | None = None,
    now: datetime | None = None,
) -> WorkerTask:
    now = now or utcnow()
    task = WorkerTask(
        kind=kind,
        payload=payload,
        status=TaskStatus.QUEUED,
        attempts=0,
        max_attempts=max_attempts or settings.task_max_attempts,
        run_after=now + timedelta(seconds=max(0.0, float(delay_s))),
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    logger.info("tasks.enqueued id=%s kind=%s delay_s=%s", task.id, kind, delay_s)
    return task


def _requeue_stale(db: Session, now: datetime) -> None:
    cutoff = now - timedelta(seconds=STALE_RUNNING_AFTER_S)
    result = db.execute(
        update(WorkerTask)
        .where(WorkerTask.status == TaskStatus.RUNNING, WorkerTask.updated_at < cutoff)
        .values(status=TaskStatus.QUEUED, run_after=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.warning("tasks.requeued_stale count=%s", result.rowcount)


def _claim(db: Session, task_id: int, now: datetime) -> bool:
    result = db.execute(
        update(WorkerTask)
        .where(WorkerTask.id == task_id, WorkerTask.status == TaskStatus.QUEUED)
        .values(status=TaskStatus.RUNNING, attempts=WorkerTask.attempts + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def _finish(db: Session, task: WorkerTask, **values: Any) -> None:
    db.execute(
        update(WorkerTask)
        .where(WorkerTask.id == task.id)
        .values(**values, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()


async def run_due_tasks(
    db: Session,
    handlers: dict[str, Handler],
    *,
    now: datetime | None = None,
    limit: int = 20,
) -> RunSummary:
    now = now or utcnow()
    summary = RunSummary()
    _requeue_stale(db, now)

    due_ids = list(
        db.execute(
            select(WorkerTask.id)
            .where(WorkerTask.status == TaskStatus.QUEUED, WorkerTask.run_after <= now)
            .order_by(WorkerTask.run_after, WorkerTask.id)
            .limit(max(1, int(limit)))
        ).scalars()
    )

    for task_id in due_ids:
        if not _claim(db, task_id, now):
            continue
        summary.claimed += 1
        task = db.get(WorkerTask, task_id)
        if task is None:
            continue
        db.refresh(task)

        handler = handlers.get(task.kind)
        if handler is None:
            logger.error("tasks.unknown_kind id=%s kind=%s", task.id, task.kind)
            _finish(db, task, status=TaskStatus.DEAD, last_error=f"No handler for task kind {task.kind}")
            summary.dead += 1
            continue

        try:
            outcome = await handler(db, dict(task.payload or {}))
        except Exception as e:
            db.rollback()
            attempts = int(task.attempts or 0)
            error = f"{type(e).__name__}: {e}"[:2000]
            if attempts >= int(task.max_attempts or 1):
                logger.exception("tasks.dead id=%s kind=%s attempts=%s", task.id, task.kind, attempts)
                _finish(db, task, status=TaskStatus.DEAD, last_error=error)
                summary.dead += 1
            else:
                delay = backoff_delay_s(attempts)
                logger.warning(
                    "tasks.retry id=%s kind=%s attempts=%s delay_s=%.1f error=%s", task.id, task.kind, attempts, delay, error
                )
                _finish(
                    db,
                    task,
                    status=TaskStatus.QUEUED,
                    last_error=error,
                    run_after=now + timedelta(seconds=delay),
                )
                summary.retried += 1
            continue

        if isinstance(outcome, Reschedule):
            _finish(
                db,
                task,
                status=TaskStatus.QUEUED,
                attempts=max(0, int(task.attempts or 0) - 1),
                run_after=now + timedelta(seconds=max(0.0, float(outcome.delay_s))),
            )
            summary.rescheduled += 1
        else:
            _finish(db, task, status=TaskStatus.DONE, last_error=None)
            summary.done += 1

    if summary.claimed:
        logger.info(
            "tasks.run claimed=%s done=%s rescheduled=%s retried=%s dead=%s",
            summary.claimed,
            summary.done,
            summary.rescheduled,
            summary.retried,
            summary.dead,
        )
    return summary
