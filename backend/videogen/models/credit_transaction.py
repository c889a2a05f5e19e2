import enum

from sqlalchemy import Column, DateTime, Enum, Integer, String, Text
from sqlalchemy.sql import func

from videogen.core.database import Base


class TransactionType(str, enum.Enum):
    CONSUMPTION = "consumption"
    REFUND = "refund"
    GRANT = "grant"


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    type = Column(Enum(TransactionType, values_callable=lambda e: [m.value for m in e], name="credittransactiontype"), index=True, nullable=False)
    resource_type = Column(String, index=True, nullable=True)
    resource_id = Column(String, index=True, nullable=True)
    description = Column(Text, nullable=True)
    # One consumption per resource, one refund per resource, one grant per source.
    idempotency_key = Column(String, unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
