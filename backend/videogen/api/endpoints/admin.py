from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from videogen.core.database import get_db
from videogen.core.errors import bad_request, not_found
from videogen.core.security import CurrentUser, require_admin
from videogen.models.credit_transaction import CreditTransaction, TransactionType
from videogen.models.generation_job import GenerationJob
from videogen.models.profile import Profile
from videogen.models.worker_task import TaskStatus, WorkerTask
from videogen.schemas.credits import AdminGrantRequest, BalanceResponse
from videogen.schemas.job import JobListResponse, JobResponse
from videogen.services.credits import get_balance, grant_credits

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/admin/stats")
async def admin_stats(db: Session = Depends(get_db)) -> dict:
    users = int(db.query(func.count(Profile.id)).scalar() or 0)
    jobs_by_status = {
        str(getattr(status, "value", status)): int(count)
        for status, count in db.query(GenerationJob.status, func.count(GenerationJob.id)).group_by(GenerationJob.status)
    }
    consumed = int(
        db.query(func.coalesce(func.sum(CreditTransaction.amount), 0))
        .filter(CreditTransaction.type == TransactionType.CONSUMPTION)
        .scalar()
        or 0
    )
    refunded = int(
        db.query(func.coalesce(func.sum(CreditTransaction.amount), 0))
        .filter(CreditTransaction.type == TransactionType.REFUND)
        .scalar()
        or 0
    )
    dead_tasks = int(db.query(func.count(WorkerTask.id)).filter(WorkerTask.status == TaskStatus.DEAD).scalar() or 0)
    return {
        "users": users,
        "jobs": jobs_by_status,
        "credits_consumed": -consumed,
        "credits_refunded": refunded,
        "dead_tasks": dead_tasks,
    }


@router.get("/admin/jobs", response_model=JobListResponse)
async def admin_jobs(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str | None = None,
    db: Session = Depends(get_db),
):
    query = db.query(GenerationJob)
    if user_id:
        query = query.filter(GenerationJob.user_id == user_id)
    total = query.count()
    rows = query.order_by(GenerationJob.created_at.desc()).offset(offset).limit(limit).all()
    return JobListResponse(items=[JobResponse.model_validate(r) for r in rows], total=total, limit=limit, offset=offset)


@router.post("/admin/credits/grant", response_model=BalanceResponse)
async def admin_grant_credits(
    body: AdminGrantRequest,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    if body.amount <= 0:
        raise bad_request("amount must be positive")
    if db.query(Profile).filter(Profile.id == body.user_id).first() is None:
        raise not_found("User not found")
    grant_credits(
        db,
        user_id=body.user_id,
        amount=body.amount,
        source=f"admin:{uuid4()}",
        description=(body.reason or "Admin grant")[:500],
        resource_type="admin_grant",
    )
    logger.info("admin.credits_granted admin=%s user=%s amount=%s", admin.id, body.user_id, body.amount)
    balance = get_balance(db, body.user_id)
    return BalanceResponse(credits_remaining=balance.remaining, credits_total=balance.total, period_end=balance.period_end)
