from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from videogen.core.database import Base


class CreditBalance(Base):
    __tablename__ = "credit_balances"
    __table_args__ = (CheckConstraint("credits_remaining >= 0", name="ck_credit_balances_non_negative"),)

    user_id = Column(String, primary_key=True, index=True)
    credits_remaining = Column(Integer, nullable=False, default=0)
    credits_total = Column(Integer, nullable=False, default=0)
    period_start = Column(DateTime(timezone=True), server_default=func.now())
    period_end = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
