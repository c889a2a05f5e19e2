from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from videogen.models.credit_transaction import TransactionType


class BalanceResponse(BaseModel):
    credits_remaining: int
    credits_total: int
    period_end: Optional[datetime] = None


class TransactionResponse(BaseModel):
    id: int
    amount: int
    balance_after: int
    type: TransactionType
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TransactionListResponse(BaseModel):
    items: List[TransactionResponse]


class SubscriptionSummary(BaseModel):
    plan: str
    status: Optional[str] = None
    effective_plan: str
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False


class MeResponse(BaseModel):
    id: str
    email: str
    role: str
    credits: BalanceResponse
    subscription: SubscriptionSummary


class AdminGrantRequest(BaseModel):
    user_id: str
    amount: int
    reason: str = "Admin grant"
