from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any

import jwt
import requests
from fastapi import Depends, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from videogen.core.database import get_db
from videogen.core.errors import APIError, forbidden
from videogen.core.settings import settings
from videogen.models.profile import Profile
from videogen.services.cache import TTLCache
from videogen.services.credits import grant_signup_bonus

logger = logging.getLogger(__name__)

LAST_SEEN_RESOLUTION = timedelta(minutes=10)

# Remote role lookups hit Supabase REST; a short TTL keeps role changes visible.
_remote_roles = TTLCache(max_items=20000, ttl_s=60)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _unauthorized(message: str) -> APIError:
    return APIError(401, message)


def _is_admin_email(email: str) -> bool:
    normalized = str(email or "").strip().lower()
    return bool(normalized) and normalized in (settings.admin_emails or set())


def _auth_base_url() -> str:
    if not settings.supabase_url:
        raise APIError(500, "SUPABASE_URL is not configured")
    return f"{settings.supabase_url.rstrip('/')}/auth/v1"


@lru_cache(maxsize=4)
def _jwks_client(jwks_url: str) -> jwt.PyJWKClient:
    return jwt.PyJWKClient(jwks_url)


def _decode_access_token(token: str) -> dict[str, Any]:
    """Verify a Supabase access token against the project's JWKS and return its claims."""
    auth_url = _auth_base_url()
    try:
        key = _jwks_client(f"{auth_url}/.well-known/jwks.json").get_signing_key_from_jwt(token).key
        claims = jwt.decode(
            token,
            key,
            algorithms=["ES256", "RS256"],
            audience=settings.supabase_jwt_audience or "authenticated",
            issuer=settings.supabase_jwt_issuer or auth_url,
            options={"require": ["exp", "sub"]},
        )
    except jwt.PyJWTError as e:
        logger.info("auth.token_rejected error=%s", type(e).__name__)
        raise _unauthorized("Invalid bearer token")
    return dict(claims)


def _bearer_token(request: Request) -> str:
    scheme, _, token = (request.headers.get("authorization") or "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized("Missing bearer token")
    return token


def _claims_admin(claims: dict[str, Any]) -> bool:
    app_meta = claims.get("app_metadata")
    meta_role = app_meta.get("role") if isinstance(app_meta, dict) else None
    return "admin" in {str(meta_role or "").strip().lower(), str(claims.get("role") or "").strip().lower()}


def _remote_profile_role(user_id: str, user_token: str) -> str | None:
    """Role stored in the Supabase ``profiles`` table, if the project exposes one."""
    base = (settings.supabase_url or "").strip().rstrip("/")
    api_key = (settings.supabase_service_role_key or settings.supabase_anon_key or "").strip()
    if not base or not api_key:
        return None

    cached = _remote_roles.get(user_id)
    if isinstance(cached, str):
        return cached or None

    try:
        resp = requests.get(
            f"{base}/rest/v1/profiles",
            params={"select": "role", "id": f"eq.{user_id}"},
            headers={
                "apikey": api_key,
                "authorization": f"Bearer {settings.supabase_service_role_key or user_token}",
                "accept": "application/json",
            },
            timeout=8,
        )
        rows = resp.json() if resp.status_code == 200 else []
    except (requests.RequestException, ValueError) as e:
        logger.warning("auth.remote_role_failed user=%s error=%s", user_id, e)
        return None

    first = rows[0] if isinstance(rows, list) and rows and isinstance(rows[0], dict) else {}
    role = str(first.get("role") or "").strip().lower()
    if resp.status_code == 200:
        _remote_roles.set(user_id, role)
    return role or None


def _decide_role(
    *,
    email_is_admin: bool,
    claim_is_admin: bool,
    db_role: str | None,
    supabase_role: str | None,
) -> tuple[str, str]:
    """Pick the effective role and the source that decided it. Admin from any source wins."""
    stored = str(db_role or "").strip().lower()
    if stored == "admin":
        return ("admin", "db_profile")
    if email_is_admin:
        return ("admin", "admin_emails")
    if claim_is_admin:
        return ("admin", "jwt_claim")
    if str(supabase_role or "").strip().lower() == "admin":
        return ("admin", "supabase_profiles")
    if stored:
        return (stored, "db_profile")
    return ("user", "default")


def _create_profile(db: Session, *, user_id: str, email: str, role: str) -> Profile:
    """First login: store the profile and grant the signup credits."""
    profile = Profile(id=user_id, email=email, role=role, last_seen_at=_utcnow())
    db.add(profile)
    try:
        db.commit()
    except IntegrityError:
        # A parallel request created it first.
        db.rollback()
        existing = db.query(Profile).filter(Profile.id == user_id).first()
        if existing is None:
            raise
        return existing
    db.refresh(profile)
    granted = grant_signup_bonus(db, user_id)
    logger.info("auth.profile_created user=%s role=%s signup_bonus=%s", user_id, role, granted)
    return profile


def _sync_profile(db: Session, profile: Profile, *, email: str, role: str) -> None:
    changed = False
    if (profile.role or "").strip().lower() != role:
        logger.info("auth.role_changed user=%s from=%s to=%s", profile.id, profile.role, role)
        profile.role = role
        changed = True
    if email and profile.email != email:
        profile.email = email
        changed = True

    now = _utcnow()
    last_seen = profile.last_seen_at
    if last_seen is not None and last_seen.tzinfo is None:
        last_seen = last_seen.replace(tzinfo=timezone.utc)
    if last_seen is None or now - last_seen >= LAST_SEEN_RESOLUTION:
        profile.last_seen_at = now
        changed = True

    if not changed:
        return
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.warning("auth.profile_update_failed user=%s", profile.id)


def get_current_user(request: Request, db: Session = Depends(get_db)) -> CurrentUser:
    token = _bearer_token(request)
    claims = _decode_access_token(token)
    user_id = str(claims.get("sub") or "").strip()
    email = str(claims.get("email") or "").strip()
    if not user_id:
        raise _unauthorized("Invalid token")

    email_is_admin = _is_admin_email(email)
    claim_is_admin = _claims_admin(claims)
    profile = db.query(Profile).filter(Profile.id == user_id).first()

    stored_role = (profile.role if profile else None) or None
    remote_role = None
    if str(stored_role or "").lower() != "admin" and not (email_is_admin or claim_is_admin):
        remote_role = _remote_profile_role(user_id, token)

    role, reason = _decide_role(
        email_is_admin=email_is_admin,
        claim_is_admin=claim_is_admin,
        db_role=stored_role,
        supabase_role=remote_role,
    )
    if profile is None:
        profile = _create_profile(db, user_id=user_id, email=email, role=role)
    else:
        _sync_profile(db, profile, email=email, role=role)
    if role == "admin":
        logger.debug("auth.admin user=%s reason=%s", user_id, reason)

    return CurrentUser(id=profile.id, email=profile.email or "", role=profile.role or "user")


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise forbidden("Admin access required")
    return user
