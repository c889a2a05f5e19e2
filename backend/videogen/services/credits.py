from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from videogen.core.settings import settings
from videogen.models.credit_balance import CreditBalance
from videogen.models.credit_transaction import CreditTransaction, TransactionType

logger = logging.getLogger(__name__)


VEO_STANDARD_MODEL = "veo-3.1-generate-preview"
VEO_FAST_MODEL = "veo-3.1-fast-generate-preview"
VEO_MODELS = (VEO_STANDARD_MODEL, VEO_FAST_MODEL)

IMAGE_CREDIT_COSTS: dict[str, int] = {"1K": 1, "2K": 2, "4K": 3}
MUSIC_CREDIT_COST = 1
VOICEOVER_CREDIT_COST = 1
FREE_TRANSLATION_LANGUAGES = 1
CREDIT_PERIOD_DAYS = 30


class CreditLedgerError(RuntimeError):
    pass


@dataclass(frozen=True)
class ConsumeResult:
    success: bool
    remaining: int
    duplicate: bool = False


@dataclass(frozen=True)
class CreditBalanceView:
    remaining: int
    total: int
    period_end: datetime | None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def consumption_key(resource_type: str, resource_id: str) -> str:
    return f"consumption:{resource_type}:{resource_id}"


def refund_key(resource_id: str) -> str:
    return f"refund:{resource_id}"


def grant_key(source: str) -> str:
    return f"grant:{source}"


def _remaining(db: Session, user_id: str) -> int:
    value = db.execute(
        select(CreditBalance.credits_remaining).where(CreditBalance.user_id == user_id)
    ).scalar_one_or_none()
    return int(value or 0)


def _transaction_exists(db: Session, key: str) -> bool:
    found = db.execute(
        select(CreditTransaction.id).where(CreditTransaction.idempotency_key == key)
    ).first()
    return found is not None


def has_refund(db: Session, resource_id: str) -> bool:
    return _transaction_exists(db, refund_key(resource_id))


def _ensure_balance_row(db: Session, user_id: str) -> None:
    if db.get(CreditBalance, user_id) is not None:
        return
    try:
        with db.begin_nested():
            db.add(
                CreditBalance(
                    user_id=user_id,
                    credits_remaining=0,
                    credits_total=0,
                    period_start=utcnow(),
                    period_end=utcnow() + timedelta(days=CREDIT_PERIOD_DAYS),
                )
            )
    except IntegrityError:
        # Created concurrently by another request.
        pass


def get_balance(db: Session, user_id: str) -> CreditBalanceView:
    row = db.execute(select(CreditBalance).where(CreditBalance.user_id == user_id)).scalar_one_or_none()
    if row is None:
        return CreditBalanceView(remaining=0, total=0, period_end=None)
    return CreditBalanceView(
        remaining=int(row.credits_remaining or 0),
        total=int(row.credits_total or 0),
        period_end=row.period_end,
    )


def list_transactions(db: Session, user_id: str, limit: int = 50) -> list[CreditTransaction]:
    limit = max(1, min(int(limit or 50), 200))
    return (
        db.query(CreditTransaction)
        .filter(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .limit(limit)
        .all()
    )


def consume_credits(
    db: Session,
    *,
    user_id: str,
    amount: int,
    resource_type: str,
    resource_id: str,
    description: str | None = None,
) -> ConsumeResult:
    """Debit ``amount`` credits from the user's balance.

    The balance check and the decrement happen in a single conditional UPDATE, so
    concurrent debits can never drive the balance below zero. When the balance is
    short nothing is written and ``success`` is False. Database failures raise
    ``CreditLedgerError``: callers must not start the billable action in that case.

    A second debit for the same ``(resource_type, resource_id)`` is not charged
    again; it reports ``success=True, duplicate=True``.
    """
    amount = int(amount)
    if amount <= 0:
        raise ValueError("amount must be positive")
    key = consumption_key(resource_type, resource_id) if resource_id else None

    try:
        result = db.execute(
            update(CreditBalance)
            .where(CreditBalance.user_id == user_id, CreditBalance.credits_remaining >= amount)
            .values(credits_remaining=CreditBalance.credits_remaining - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            remaining = _remaining(db, user_id)
            db.commit()
            logger.info(
                "credits.consume_rejected user=%s amount=%s remaining=%s resource=%s:%s",
                user_id,
                amount,
                remaining,
                resource_type,
                resource_id,
            )
            return ConsumeResult(success=False, remaining=remaining)

        remaining = _remaining(db, user_id)
        db.add(
            CreditTransaction(
                user_id=user_id,
                amount=-amount,
                balance_after=remaining,
                type=TransactionType.CONSUMPTION,
                resource_type=resource_type,
                resource_id=resource_id or None,
                description=description,
                idempotency_key=key,
            )
        )
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if key and _transaction_exists(db, key):
            logger.warning("credits.consume_duplicate user=%s resource=%s:%s", user_id, resource_type, resource_id)
            return ConsumeResult(success=True, remaining=_remaining(db, user_id), duplicate=True)
        raise CreditLedgerError("Failed to record credit consumption") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("credits.consume_failed user=%s amount=%s", user_id, amount)
        raise CreditLedgerError("Failed to record credit consumption") from e

    logger.info(
        "credits.consumed user=%s amount=%s remaining=%s resource=%s:%s",
        user_id,
        amount,
        remaining,
        resource_type,
        resource_id,
    )
    return ConsumeResult(success=True, remaining=remaining)


def refund_credits(
    db: Session,
    *,
    user_id: str,
    amount: int,
    resource_id: str,
    reason: str,
    resource_type: str | None = None,
) -> bool:
    """Credit ``amount`` back for ``resource_id``. Best-effort: never raises.

    At most one refund is ever written per resource id (unique idempotency key),
    so repeated calls after the first are no-ops. Returns True when a refund
    row was written.
    """
    amount = int(amount or 0)
    if amount <= 0 or not resource_id:
        return False
    key = refund_key(resource_id)

    try:
        if _transaction_exists(db, key):
            logger.info("credits.refund_skipped user=%s resource=%s reason=already_refunded", user_id, resource_id)
            return False
        _ensure_balance_row(db, user_id)
        db.execute(
            update(CreditBalance)
            .where(CreditBalance.user_id == user_id)
            .values(credits_remaining=CreditBalance.credits_remaining + amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        remaining = _remaining(db, user_id)
        db.add(
            CreditTransaction(
                user_id=user_id,
                amount=amount,
                balance_after=remaining,
                type=TransactionType.REFUND,
                resource_type=resource_type,
                resource_id=resource_id,
                description=reason,
                idempotency_key=key,
            )
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning("credits.refund_duplicate user=%s resource=%s", user_id, resource_id)
        return False
    except Exception:
        db.rollback()
        logger.exception("credits.refund_failed user=%s amount=%s resource=%s", user_id, amount, resource_id)
        return False

    logger.info("credits.refunded user=%s amount=%s remaining=%s resource=%s", user_id, amount, remaining, resource_id)
    return True


def grant_signup_bonus(db: Session, user_id: str) -> bool:
    """Create the user's balance with the signup bonus. No-op once a balance exists."""
    if db.get(CreditBalance, user_id) is not None:
        return False
    bonus = int(settings.signup_bonus_credits)
    now = utcnow()
    try:
        db.add(
            CreditBalance(
                user_id=user_id,
                credits_remaining=bonus,
                credits_total=bonus,
                period_start=now,
                period_end=now + timedelta(days=CREDIT_PERIOD_DAYS),
            )
        )
        db.flush()
        db.add(
            CreditTransaction(
                user_id=user_id,
                amount=bonus,
                balance_after=bonus,
                type=TransactionType.GRANT,
                resource_type="signup_bonus",
                resource_id=user_id,
                description=f"Signup bonus - {bonus} free AI Video credits",
                idempotency_key=grant_key(f"signup_bonus:{user_id}"),
            )
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        return False
    logger.info("credits.signup_bonus user=%s amount=%s", user_id, bonus)
    return True


def grant_credits(
    db: Session,
    *,
    user_id: str,
    amount: int,
    source: str,
    description: str | None = None,
    resource_type: str = "grant",
) -> bool:
    """Add credits once per ``source`` (credit packs, admin grants). Returns False for a repeat source."""
    amount = int(amount)
    if amount <= 0:
        raise ValueError("amount must be positive")
    key = grant_key(source)
    if _transaction_exists(db, key):
        return False
    try:
        _ensure_balance_row(db, user_id)
        db.execute(
            update(CreditBalance)
            .where(CreditBalance.user_id == user_id)
            .values(
                credits_remaining=CreditBalance.credits_remaining + amount,
                credits_total=CreditBalance.credits_total + amount,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        remaining = _remaining(db, user_id)
        db.add(
            CreditTransaction(
                user_id=user_id,
                amount=amount,
                balance_after=remaining,
                type=TransactionType.GRANT,
                resource_type=resource_type,
                resource_id=source,
                description=description,
                idempotency_key=key,
            )
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        return False
    logger.info("credits.granted user=%s amount=%s source=%s remaining=%s", user_id, amount, source, remaining)
    return True


def allocate_plan_credits(db: Session, *, user_id: str, monthly_credits: int, plan: str, source: str) -> int:
    """Top the balance up to the plan's monthly allowance and open a new period.

    Unused credits above the allowance are kept. The top-up is recorded as a
    grant so the transaction log still sums to the balance. Returns the amount added.
    """
    allowance = max(0, int(monthly_credits))
    now = utcnow()
    _ensure_balance_row(db, user_id)

    for _attempt in range(3):
        current = _remaining(db, user_id)
        delta = max(0, allowance - current)
        result = db.execute(
            update(CreditBalance)
            .where(CreditBalance.user_id == user_id, CreditBalance.credits_remaining == current)
            .values(
                credits_remaining=current + delta,
                credits_total=max(allowance, current),
                period_start=now,
                period_end=now + timedelta(days=CREDIT_PERIOD_DAYS),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Balance moved underneath us; re-read and retry.
            db.rollback()
            continue
        if delta > 0:
            db.add(
                CreditTransaction(
                    user_id=user_id,
                    amount=delta,
                    balance_after=current + delta,
                    type=TransactionType.GRANT,
                    resource_type="plan_allocation",
                    resource_id=source,
                    description=f"{plan} plan credit allocation",
                    idempotency_key=grant_key(source),
                )
            )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return 0
        logger.info("credits.allocated user=%s plan=%s added=%s", user_id, plan, delta)
        return delta

    raise CreditLedgerError("Could not allocate plan credits")


def veo_credit_cost(duration_s: float, model: str = VEO_STANDARD_MODEL) -> int:
    """Standard model: 2 credits per second. Fast/draft model: 1 credit per second."""
    rate = 1 if model == VEO_FAST_MODEL else 2
    return max(1, math.ceil(float(duration_s) * rate))


def image_credit_cost(resolution: str, num_images: int = 1) -> int:
    per_image = IMAGE_CREDIT_COSTS.get(str(resolution or ""), 1)
    return per_image * max(1, min(int(num_images or 1), 4))


def translation_credit_cost(language_count: int) -> int:
    return max(0, int(language_count) - FREE_TRANSLATION_LANGUAGES)


def chargeable_translations(successful: int, charged: int) -> int:
    return min(int(charged), max(0, int(successful) - FREE_TRANSLATION_LANGUAGES))
