from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from videogen.core.database import get_db
from videogen.core.security import CurrentUser, get_current_user
from videogen.schemas.credits import BalanceResponse, MeResponse, SubscriptionSummary
from videogen.services import plans
from videogen.services.credits import get_balance
from videogen.services.quotas import get_subscription

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(get_current_user)])


@router.get("/me", response_model=MeResponse)
async def me(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    balance = get_balance(db, current_user.id)
    sub = get_subscription(db, current_user.id)
    if sub is None:
        summary = SubscriptionSummary(plan="free", status=None, effective_plan="free")
    else:
        summary = SubscriptionSummary(
            plan=sub.plan or "free",
            status=sub.status,
            effective_plan=plans.effective_plan(sub.plan, sub.status),
            current_period_end=sub.current_period_end,
            cancel_at_period_end=bool(sub.cancel_at_period_end),
        )
    return MeResponse(
        id=current_user.id,
        email=current_user.email,
        role=current_user.role,
        credits=BalanceResponse(
            credits_remaining=balance.remaining,
            credits_total=balance.total,
            period_end=balance.period_end,
        ),
        subscription=summary,
    )
