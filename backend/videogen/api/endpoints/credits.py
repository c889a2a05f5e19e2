from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from videogen.core.database import get_db
from videogen.core.security import CurrentUser, get_current_user
from videogen.schemas.credits import BalanceResponse, TransactionListResponse, TransactionResponse
from videogen.services.credits import get_balance, list_transactions

router = APIRouter(dependencies=[Depends(get_current_user)])


@router.get("/credits/balance", response_model=BalanceResponse)
async def credit_balance(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    balance = get_balance(db, current_user.id)
    return BalanceResponse(
        credits_remaining=balance.remaining,
        credits_total=balance.total,
        period_end=balance.period_end,
    )


@router.get("/credits/transactions", response_model=TransactionListResponse)
async def credit_transactions(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    rows = list_transactions(db, current_user.id, limit=limit)
    return TransactionListResponse(items=[TransactionResponse.model_validate(r) for r in rows])
