from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from videogen.core.database import get_db
from videogen.core.settings import settings
from videogen.models.subscription import Subscription
from videogen.models.webhook_event import WebhookEvent
from videogen.services import plans
from videogen.services.credits import allocate_plan_credits, grant_credits

logger = logging.getLogger(__name__)

router = APIRouter()

SUBSCRIPTION_EVENTS = {"customer.subscription.created", "customer.subscription.updated"}


def _verify_stripe_signature(raw_body: bytes, signature: str | None) -> dict[str, Any]:
    if not settings.stripe_webhook_secret:
        raise HTTPException(status_code=500, detail="STRIPE_WEBHOOK_SECRET is not configured")
    sig = (signature or "").strip()
    if not sig:
        raise HTTPException(status_code=400, detail="Missing stripe-signature")
    payload = raw_body.decode("utf-8")
    try:
        stripe.WebhookSignature.verify_header(payload, sig, settings.stripe_webhook_secret)
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")
    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")
    return event


def _from_timestamp(raw: object) -> datetime | None:
    if raw in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _first_price(obj: dict[str, Any]) -> dict[str, Any]:
    items = ((obj.get("items") or {}).get("data")) or []
    if items and isinstance(items[0], dict):
        return items[0].get("price") or {}
    return {}


def _find_subscription(db: Session, *, user_id: str = "", stripe_subscription_id: str = "", customer_id: str = "") -> Subscription | None:
    if user_id:
        sub = db.query(Subscription).filter(Subscription.user_id == user_id).first()
        if sub is not None:
            return sub
    if stripe_subscription_id:
        sub = db.query(Subscription).filter(Subscription.stripe_subscription_id == stripe_subscription_id).first()
        if sub is not None:
            return sub
    if customer_id:
        return db.query(Subscription).filter(Subscription.stripe_customer_id == customer_id).first()
    return None


def _upsert_subscription(db: Session, user_id: str, **values: Any) -> Subscription:
    sub = _find_subscription(db, user_id=user_id)
    if sub is None:
        sub = Subscription(user_id=user_id, plan="free")
        db.add(sub)
    for key, value in values.items():
        if value is not None:
            setattr(sub, key, value)
    db.commit()
    db.refresh(sub)
    return sub


def _checkout_price_id(session: dict[str, Any]) -> str | None:
    """Price of the first line item; fetched from Stripe when the event did not expand them."""
    items = ((session.get("line_items") or {}).get("data")) or []
    if not items and settings.stripe_secret_key and session.get("id"):
        try:
            listed = stripe.checkout.Session.list_line_items(
                str(session["id"]), limit=1, api_key=settings.stripe_secret_key
            )
            items = [item.to_dict() if hasattr(item, "to_dict") else item for item in listed.data]
        except stripe.StripeError as e:
            logger.warning("billing.line_items_failed session=%s error=%s", session.get("id"), e)
            return None
    price = (items[0].get("price") or {}) if items and isinstance(items[0], dict) else {}
    return str(price.get("id") or "") or None


def _checkout_pack(session: dict[str, Any]) -> plans.CreditPack | None:
    metadata = session.get("metadata") or {}
    pack = plans.CREDIT_PACKS.get(str(metadata.get("pack_id") or ""))
    if pack is not None:
        return pack
    return plans.credit_pack_from_price_id(_checkout_price_id(session))


def _handle_checkout_completed(db: Session, session: dict[str, Any]) -> None:
    metadata = session.get("metadata") or {}
    user_id = str(metadata.get("supabase_user_id") or session.get("client_reference_id") or "").strip()
    if not user_id:
        logger.warning("billing.checkout_without_user session=%s", session.get("id"))
        return

    mode = str(session.get("mode") or "")
    if mode == "payment":
        pack = _checkout_pack(session)
        credits = pack.credits if pack else int(metadata.get("credits") or 0)
        if credits <= 0:
            logger.warning("billing.checkout_unknown_pack session=%s", session.get("id"))
            return
        grant_credits(
            db,
            user_id=user_id,
            amount=credits,
            source=f"stripe_checkout:{session.get('id')}",
            description=f"Credit pack purchase - {credits} credits",
            resource_type="credit_pack",
        )
        return

    if mode == "subscription":
        _upsert_subscription(
            db,
            user_id,
            plan=str(metadata.get("plan") or "").strip().lower() or None,
            status="active",
            stripe_customer_id=str(session.get("customer") or "") or None,
            stripe_subscription_id=str(session.get("subscription") or "") or None,
        )


def _handle_subscription_change(db: Session, obj: dict[str, Any]) -> None:
    metadata = obj.get("metadata") or {}
    stripe_subscription_id = str(obj.get("id") or "")
    customer_id = str(obj.get("customer") or "")
    user_id = str(metadata.get("supabase_user_id") or "").strip()
    if not user_id:
        existing = _find_subscription(db, stripe_subscription_id=stripe_subscription_id, customer_id=customer_id)
        if existing is None:
            logger.warning("billing.subscription_without_user subscription=%s", stripe_subscription_id)
            return
        user_id = existing.user_id

    price = _first_price(obj)
    _upsert_subscription(
        db,
        user_id,
        plan=plans.plan_from_price_id(price.get("id")),
        status=str(obj.get("status") or "") or None,
        billing_interval=str((price.get("recurring") or {}).get("interval") or "") or None,
        current_period_end=_from_timestamp(obj.get("current_period_end")),
        cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
        stripe_customer_id=customer_id or None,
        stripe_subscription_id=stripe_subscription_id or None,
    )


def _handle_subscription_deleted(db: Session, obj: dict[str, Any]) -> None:
    sub = _find_subscription(db, stripe_subscription_id=str(obj.get("id") or ""), customer_id=str(obj.get("customer") or ""))
    if sub is None:
        return
    sub.plan = "free"
    sub.status = "canceled"
    sub.stripe_subscription_id = None
    sub.cancel_at_period_end = False
    db.commit()


def _handle_invoice_paid(db: Session, invoice: dict[str, Any]) -> None:
    sub = _find_subscription(
        db,
        stripe_subscription_id=str(invoice.get("subscription") or ""),
        customer_id=str(invoice.get("customer") or ""),
    )
    if sub is None:
        logger.warning("billing.invoice_without_subscription invoice=%s", invoice.get("id"))
        return
    plan = plans.effective_plan(sub.plan, sub.status or "active")
    allocate_plan_credits(
        db,
        user_id=sub.user_id,
        monthly_credits=plans.monthly_credits(plan),
        plan=plan,
        source=f"stripe_invoice:{invoice.get('id')}",
    )


def _handle_payment_failed(db: Session, invoice: dict[str, Any]) -> None:
    sub = _find_subscription(db, stripe_subscription_id=str(invoice.get("subscription") or ""))
    if sub is None:
        return
    sub.status = "past_due"
    db.commit()


def process_stripe_event(db: Session, event: dict[str, Any]) -> bool:
    """Apply one Stripe event. Returns False when the event id was already processed."""
    event_id = str(event.get("id") or "").strip()
    event_type = str(event.get("type") or "").strip()
    if event_id and db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first() is not None:
        logger.info("billing.webhook_duplicate event=%s type=%s", event_id, event_type)
        return False

    obj = ((event.get("data") or {}).get("object")) or {}
    try:
        if event_type == "checkout.session.completed":
            _handle_checkout_completed(db, obj)
        elif event_type in SUBSCRIPTION_EVENTS:
            _handle_subscription_change(db, obj)
        elif event_type == "customer.subscription.deleted":
            _handle_subscription_deleted(db, obj)
        elif event_type == "invoice.paid":
            _handle_invoice_paid(db, obj)
        elif event_type == "invoice.payment_failed":
            _handle_payment_failed(db, obj)
    except Exception:
        db.rollback()
        raise

    if event_id:
        db.add(WebhookEvent(provider="stripe", event_id=event_id, event_type=event_type))
        try:
            db.commit()
        except IntegrityError:
            # Processed concurrently; the credit grants are keyed so nothing doubled.
            db.rollback()
            return False
    logger.info("billing.webhook_processed event=%s type=%s", event_id, event_type)
    return True


@router.post("/billing/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)) -> dict:
    raw_body = await request.body()
    event = _verify_stripe_signature(raw_body, request.headers.get("stripe-signature"))
    processed = process_stripe_event(db, event)
    return {"received": True, "duplicate": not processed}
