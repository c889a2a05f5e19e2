from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from videogen.core.database import Base
from videogen.models.credit_balance import CreditBalance
from videogen.models.credit_transaction import CreditTransaction
from videogen.services.credits import (
    VEO_FAST_MODEL,
    allocate_plan_credits,
    consume_credits,
    get_balance,
    grant_credits,
    grant_signup_bonus,
    refund_credits,
    veo_credit_cost,
)


def main() -> None:
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=[CreditBalance.__table__, CreditTransaction.__table__])

    db = TestingSessionLocal()
    try:
        user_id = "user-1"
        assert grant_signup_bonus(db, user_id)
        assert get_balance(db, user_id).remaining == 2

        added = allocate_plan_credits(db, user_id=user_id, monthly_credits=50, plan="creator", source="verify_invoice")
        assert added == 48, added

        cost = veo_credit_cost(8)
        assert cost == 16, cost
        assert veo_credit_cost(8, VEO_FAST_MODEL) == 8

        spend = consume_credits(db, user_id=user_id, amount=cost, resource_type="veo_video", resource_id="job-1")
        assert spend.success and spend.remaining == 34, spend

        short = consume_credits(db, user_id=user_id, amount=100, resource_type="veo_video", resource_id="job-2")
        assert not short.success and short.remaining == 34, short

        assert refund_credits(db, user_id=user_id, amount=cost, resource_id="job-1", reason="verify")
        assert not refund_credits(db, user_id=user_id, amount=cost, resource_id="job-1", reason="verify again")

        grant_credits(db, user_id=user_id, amount=25, source="verify_pack")
        bal = get_balance(db, user_id).remaining
        assert bal == 75, bal

        rows = db.query(CreditTransaction).filter(CreditTransaction.user_id == user_id).all()
        assert sum(r.amount for r in rows) == bal
        assert any(r.amount < 0 for r in rows)
    finally:
        db.close()


if __name__ == "__main__":
    main()
    print("OK")
