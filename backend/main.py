import logging
import os

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException

from videogen.api.endpoints import account, admin, ai, billing, credits, heygen, images, internal, music, public, tts, veo, videos
from videogen.core.database import Base, engine
from videogen.core.errors import http_exception_handler, unhandled_exception_handler, validation_exception_handler
from videogen.core.settings import settings
from videogen.models import (  # noqa: F401  registers tables on Base.metadata
    ai_usage,
    credit_balance,
    credit_transaction,
    custom_avatar,
    generation_job,
    profile,
    subscription,
    voiceover,
    webhook_event,
    worker_task,
)
from videogen.services.cache import ProviderCatalog
from videogen.services.llm.client import close_llm_client
from videogen.services.providers.registry import get_providers
from videogen.services.tts import close_speech_synthesizer

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("videogen")

app = FastAPI(title="VideoGen API")
app.state.provider_catalog = ProviderCatalog(ttl_s=settings.provider_catalog_ttl_s)

# Configure CORS
origins = settings.resolved_cors_origins()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)


@app.on_event("startup")
def startup() -> None:
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)
    if settings.is_production and not settings.worker_secret:
        logger.warning("startup.worker_secret_missing internal task endpoint is disabled")
    logger.info("startup.ready environment=%s storage=%s", settings.environment, settings.storage_backend)


@app.on_event("shutdown")
async def shutdown() -> None:
    await get_providers().aclose()
    await close_llm_client()
    await close_speech_synthesizer()


# API Routes
app.include_router(public.router, tags=["public"])
app.include_router(public.router, prefix="/api", tags=["public"])
app.include_router(account.router, prefix="/api", tags=["account"])
app.include_router(credits.router, prefix="/api", tags=["credits"])
app.include_router(videos.router, prefix="/api", tags=["videos"])
app.include_router(veo.router, prefix="/api", tags=["veo"])
app.include_router(images.router, prefix="/api", tags=["images"])
app.include_router(music.router, prefix="/api", tags=["music"])
app.include_router(tts.router, prefix="/api", tags=["tts"])
app.include_router(ai.router, prefix="/api", tags=["ai"])
app.include_router(heygen.router, prefix="/api", tags=["heygen"])
app.include_router(billing.router, prefix="/api", tags=["billing"])
app.include_router(internal.router, prefix="/api", tags=["internal"])
app.include_router(admin.router, prefix="/api", tags=["admin"])

# Locally stored artifacts
if settings.storage_backend == "local":
    os.makedirs(settings.storage_local_dir, exist_ok=True)
    app.mount("/media", StaticFiles(directory=settings.storage_local_dir), name="media")
