from __future__ import annotations

from dataclasses import dataclass

from videogen.core.settings import settings

PLAN_IDS = ("free", "starter", "creator", "enterprise")


@dataclass(frozen=True)
class PlanLimits:
    videos_per_month: int | None
    ai_uses_per_month: int | None
    monthly_credits: int
    max_resolution: str
    ugc_features: bool
    batch_creation: bool
    priority_support: bool


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    limits: PlanLimits


@dataclass(frozen=True)
class CreditPack:
    id: str
    credits: int
    price_usd: int


PLANS: dict[str, Plan] = {
    "free": Plan(
        id="free",
        name="Free",
        limits=PlanLimits(
            videos_per_month=5,
            ai_uses_per_month=10,
            monthly_credits=2,
            max_resolution="720p",
            ugc_features=False,
            batch_creation=False,
            priority_support=False,
        ),
    ),
    "starter": Plan(
        id="starter",
        name="Starter",
        limits=PlanLimits(
            videos_per_month=None,
            ai_uses_per_month=None,
            monthly_credits=10,
            max_resolution="1080p",
            ugc_features=False,
            batch_creation=False,
            priority_support=False,
        ),
    ),
    "creator": Plan(
        id="creator",
        name="Creator",
        limits=PlanLimits(
            videos_per_month=None,
            ai_uses_per_month=None,
            monthly_credits=50,
            max_resolution="4K",
            ugc_features=True,
            batch_creation=True,
            priority_support=False,
        ),
    ),
    "enterprise": Plan(
        id="enterprise",
        name="Enterprise",
        limits=PlanLimits(
            videos_per_month=None,
            ai_uses_per_month=None,
            monthly_credits=9999,
            max_resolution="4K",
            ugc_features=True,
            batch_creation=True,
            priority_support=True,
        ),
    ),
}

CREDIT_PACKS: dict[str, CreditPack] = {
    "pack_5": CreditPack(id="pack_5", credits=5, price_usd=10),
    "pack_25": CreditPack(id="pack_25", credits=25, price_usd=25),
    "pack_50": CreditPack(id="pack_50", credits=50, price_usd=50),
    "pack_100": CreditPack(id="pack_100", credits=100, price_usd=100),
    "pack_500": CreditPack(id="pack_500", credits=500, price_usd=500),
}


def get_plan(plan_id: str | None) -> Plan:
    return PLANS.get(str(plan_id or "free"), PLANS["free"])


def effective_plan(plan: str | None, status: str | None) -> str:
    """Plan the user is entitled to right now. Inactive subscriptions fall back to free."""
    p = str(plan or "free").strip().lower()
    active = str(status or "").strip().lower() == "active"
    if p not in PLANS:
        # Legacy "pro" subscriptions were folded into starter.
        if p == "pro":
            return "starter" if active else "free"
        return "free"
    return p if active else "free"


def is_paid_plan(plan: str) -> bool:
    return plan != "free"


def can_use_veo(plan: str) -> bool:
    return get_plan(plan).limits.ugc_features


def can_batch_create(plan: str) -> bool:
    return get_plan(plan).limits.batch_creation


def max_veo_resolution(plan: str) -> str:
    # Veo renders at most 1080p; 4K plans get 1080p.
    return "720p" if get_plan(plan).limits.max_resolution == "720p" else "1080p"


def can_generate_video(plan: str, videos_this_month: int) -> bool:
    limit = get_plan(plan).limits.videos_per_month
    return limit is None or videos_this_month < limit


def can_use_ai(plan: str, ai_uses_this_month: int) -> bool:
    limit = get_plan(plan).limits.ai_uses_per_month
    return limit is None or ai_uses_this_month < limit


def monthly_credits(plan: str) -> int:
    return get_plan(plan).limits.monthly_credits


def _plan_price_ids() -> dict[str, str]:
    mapping = {
        settings.stripe_price_starter_monthly: "starter",
        settings.stripe_price_starter_yearly: "starter",
        settings.stripe_price_creator_monthly: "creator",
        settings.stripe_price_creator_yearly: "creator",
        settings.stripe_price_pro_monthly: "starter",
        settings.stripe_price_pro_yearly: "starter",
    }
    return {k: v for k, v in mapping.items() if k}


def plan_from_price_id(price_id: str | None) -> str:
    if not price_id:
        return "free"
    return _plan_price_ids().get(price_id, "free")


def credit_pack_from_price_id(price_id: str | None) -> CreditPack | None:
    if not price_id:
        return None
    for pack_id, configured in (settings.stripe_credit_pack_prices or {}).items():
        if configured and configured == price_id:
            return CREDIT_PACKS.get(pack_id)
    return None
