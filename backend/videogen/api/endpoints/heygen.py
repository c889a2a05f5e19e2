from __future__ import annotations

import base64
import binascii
import logging
from uuid import uuid4

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from videogen.api.deps import get_artifact_persister, get_catalog, get_provider_registry
from videogen.core.database import get_db
from videogen.core.errors import bad_request, plan_required, provider_error_response
from videogen.core.security import CurrentUser, get_current_user, require_admin
from videogen.core.settings import settings
from videogen.models.custom_avatar import CustomAvatar
from videogen.schemas.heygen import AvatarListResponse, CreateAvatarRequest, CustomAvatarResponse, VoiceListResponse
from videogen.services import plans
from videogen.services.artifacts import ArtifactPersister
from videogen.services.cache import ProviderCatalog
from videogen.services.providers.base import ProviderError
from videogen.services.providers.registry import ProviderRegistry
from videogen.services.quotas import user_plan
from videogen.services.storage import StorageError

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(get_current_user)])

CUSTOM_AVATAR_PLAN_MESSAGE = "Custom avatars require a paid plan."
_EXTENSIONS = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}


@router.get("/heygen/avatars", response_model=AvatarListResponse)
async def list_avatars(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    providers: ProviderRegistry = Depends(get_provider_registry),
    catalog: ProviderCatalog = Depends(get_catalog),
):
    try:
        avatars = await catalog.avatars(providers.heygen.list_avatars)
    except ProviderError as e:
        raise provider_error_response(e, "Failed to fetch avatars", "HeyGen")
    custom = (
        db.query(CustomAvatar)
        .filter(CustomAvatar.user_id == current_user.id)
        .order_by(CustomAvatar.created_at.desc())
        .all()
    )
    return AvatarListResponse(
        avatars=avatars,
        custom_avatars=[CustomAvatarResponse.model_validate(a) for a in custom],
    )


@router.get("/heygen/voices", response_model=VoiceListResponse)
async def list_voices(
    providers: ProviderRegistry = Depends(get_provider_registry),
    catalog: ProviderCatalog = Depends(get_catalog),
):
    try:
        voices = await catalog.voices(providers.heygen.list_voices)
    except ProviderError as e:
        raise provider_error_response(e, "Failed to fetch voices", "HeyGen")
    return VoiceListResponse(voices=voices)


@router.post("/heygen/avatars", response_model=CustomAvatarResponse)
async def create_custom_avatar(
    body: CreateAvatarRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    providers: ProviderRegistry = Depends(get_provider_registry),
    artifacts: ArtifactPersister = Depends(get_artifact_persister),
):
    if not plans.is_paid_plan(user_plan(db, current_user.id)):
        raise plan_required(CUSTOM_AVATAR_PLAN_MESSAGE)
    try:
        photo = base64.b64decode(body.photo_base64, validate=True)
    except (binascii.Error, ValueError):
        raise bad_request("Invalid photo. Could not decode image data.")

    try:
        heygen_avatar_id = await providers.heygen.create_photo_avatar(
            name=body.name,
            photo_base64=body.photo_base64,
            mime_type=body.mime_type,
        )
    except ProviderError as e:
        raise provider_error_response(e, "Failed to create avatar", "HeyGen")

    avatar_id = str(uuid4())
    photo_url = None
    try:
        photo_url = await artifacts.storage.upload(
            settings.storage_bucket_images,
            f"{current_user.id}/avatars/{avatar_id}.{_EXTENSIONS[body.mime_type]}",
            photo,
            body.mime_type,
        )
    except (StorageError, OSError) as e:
        # The avatar works without a preview image.
        logger.warning("heygen.avatar_photo_upload_failed user=%s error=%s", current_user.id, e)

    avatar = CustomAvatar(
        id=avatar_id,
        user_id=current_user.id,
        name=body.name,
        heygen_avatar_id=heygen_avatar_id,
        photo_url=photo_url,
    )
    db.add(avatar)
    db.commit()
    db.refresh(avatar)
    logger.info("heygen.avatar_created user=%s avatar=%s heygen_avatar=%s", current_user.id, avatar.id, heygen_avatar_id)
    return CustomAvatarResponse.model_validate(avatar)


@router.post("/heygen/cache/invalidate", dependencies=[Depends(require_admin)])
async def invalidate_catalog(catalog: ProviderCatalog = Depends(get_catalog)) -> dict:
    catalog.invalidate()
    return {"invalidated": True}
