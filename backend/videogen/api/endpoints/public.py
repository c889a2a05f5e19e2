from __future__ import annotations

from fastapi import APIRouter

from videogen.core.settings import settings


router = APIRouter()


@router.get("/health")
async def health() -> dict:
    return {"status": "healthy"}


@router.get("/public-config")
async def public_config() -> dict:
    return {
        "supabaseUrl": settings.supabase_url or "",
        "supabaseAnonKey": settings.supabase_anon_key or "",
    }
