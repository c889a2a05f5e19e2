from __future__ import annotations

import hmac
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Query, Request

from videogen.api.deps import TaskRunner, get_task_runner
from videogen.core.errors import APIError
from videogen.core.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter()


def require_worker_secret(request: Request) -> None:
    expected = settings.worker_secret
    if not expected:
        raise APIError(503, "WORKER_SECRET is not configured")
    provided = (request.headers.get("x-worker-secret") or "").strip()
    if not provided or not hmac.compare_digest(provided, expected):
        raise APIError(401, "Unauthorized")


@router.post("/internal/tasks/run", dependencies=[Depends(require_worker_secret)])
async def run_tasks(limit: int = Query(20, ge=1, le=100), runner: TaskRunner = Depends(get_task_runner)) -> dict:
    summary = await runner(limit=limit)
    return asdict(summary)
