import os


def _getenv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _getenv_csv_set(name: str) -> set[str]:
    raw = _getenv(name)
    if raw is None:
        return set()
    parts = [p.strip().lower() for p in raw.split(",")]
    return {p for p in parts if p}


class Settings:
    def __init__(self) -> None:
        self.environment = (_getenv("ENVIRONMENT", "development") or "development").lower()
        self.log_level = (_getenv("LOG_LEVEL", "INFO") or "INFO").upper()
        self.database_url = _getenv("DATABASE_URL", "sqlite:///./videogen.db") or "sqlite:///./videogen.db"
        self.db_auto_create = _getenv_bool("DB_AUTO_CREATE", default=True)
        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")
        self.app_url = _getenv("APP_URL", "http://localhost:3000") or "http://localhost:3000"

        self.supabase_url = _getenv("SUPABASE_URL") or _getenv("NEXT_PUBLIC_SUPABASE_URL")
        self.supabase_anon_key = _getenv("SUPABASE_ANON_KEY") or _getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY")
        self.supabase_service_role_key = _getenv("SUPABASE_SERVICE_ROLE_KEY")
        self.supabase_jwt_audience = _getenv("SUPABASE_JWT_AUD", "authenticated")
        self.supabase_jwt_issuer = _getenv("SUPABASE_JWT_ISSUER")
        self.admin_emails = _getenv_csv_set("ADMIN_EMAILS")

        # Object storage: "supabase" in production, "local" for development.
        self.storage_backend = (_getenv("STORAGE_BACKEND", "local") or "local").lower()
        self.storage_local_dir = _getenv("STORAGE_LOCAL_DIR", "./media") or "./media"
        self.storage_public_base_url = _getenv("STORAGE_PUBLIC_BASE_URL", "http://localhost:8000/media") or "http://localhost:8000/media"
        self.storage_bucket_videos = _getenv("STORAGE_BUCKET_VIDEOS", "videos") or "videos"
        self.storage_bucket_images = _getenv("STORAGE_BUCKET_IMAGES", "images") or "images"
        self.storage_bucket_music = _getenv("STORAGE_BUCKET_MUSIC", "music") or "music"
        self.storage_bucket_voiceovers = _getenv("STORAGE_BUCKET_VOICEOVERS", "voiceovers") or "voiceovers"
        self.artifact_download_timeout_s = _getenv_float("ARTIFACT_DOWNLOAD_TIMEOUT_S", 120.0)

        self.llm_api_key = _getenv("LLM_API_KEY") or _getenv("OPENROUTER_API_KEY") or _getenv("OPENAI_API_KEY")
        self.llm_base_url = _getenv("LLM_BASE_URL") or ("https://openrouter.ai/api/v1" if _getenv("OPENROUTER_API_KEY") else None)
        self.llm_model = _getenv("LLM_MODEL") or _getenv("OPENROUTER_MODEL")
        self.llm_temperature = _getenv_float("LLM_TEMPERATURE", 0.7)
        self.llm_timeout_s = _getenv_float("LLM_TIMEOUT_S", 60.0)
        self.llm_concurrency = _getenv_int("LLM_CONCURRENCY", 20)
        self.llm_max_retries = _getenv_int("LLM_MAX_RETRIES", 4)
        self.llm_retry_base_s = _getenv_float("LLM_RETRY_BASE_S", 0.7)
        self.openrouter_site_url = _getenv("OPENROUTER_SITE_URL")
        self.openrouter_app_name = _getenv("OPENROUTER_APP_NAME")

        self.heygen_api_key = _getenv("HEYGEN_API_KEY")
        self.heygen_base_url = _getenv("HEYGEN_BASE_URL", "https://api.heygen.com") or "https://api.heygen.com"
        self.google_ai_api_key = _getenv("GOOGLE_AI_API_KEY")
        self.veo_base_url = _getenv("VEO_BASE_URL", "https://generativelanguage.googleapis.com/v1beta") or "https://generativelanguage.googleapis.com/v1beta"
        self.nanobanana_api_key = _getenv("NANOBANANA_PRO_API_KEY")
        self.nanobanana_base_url = _getenv("NANOBANANA_BASE_URL", "https://nanobnana.com/api/v2") or "https://nanobnana.com/api/v2"
        self.nanobanana_status_url = _getenv("NANOBANANA_STATUS_URL", "https://api.nanobananaapi.ai/api/v1/nanobanana") or "https://api.nanobananaapi.ai/api/v1/nanobanana"
        self.replicate_api_token = _getenv("REPLICATE_API_TOKEN")
        self.replicate_base_url = _getenv("REPLICATE_BASE_URL", "https://api.replicate.com/v1") or "https://api.replicate.com/v1"
        self.provider_timeout_s = _getenv_float("PROVIDER_TIMEOUT_S", 60.0)
        self.provider_catalog_ttl_s = _getenv_int("PROVIDER_CATALOG_TTL_S", 3600)
        self.veo_segment_concurrency = max(1, _getenv_int("VEO_SEGMENT_CONCURRENCY", 5))
        self.tts_api_key = _getenv("OPENAI_API_KEY")
        self.tts_model = _getenv("TTS_MODEL", "gpt-4o-mini-tts") or "gpt-4o-mini-tts"

        self.stripe_secret_key = _getenv("STRIPE_SECRET_KEY")
        self.stripe_webhook_secret = _getenv("STRIPE_WEBHOOK_SECRET")
        self.stripe_price_starter_monthly = _getenv("STRIPE_STARTER_MONTHLY_PRICE_ID")
        self.stripe_price_starter_yearly = _getenv("STRIPE_STARTER_YEARLY_PRICE_ID")
        self.stripe_price_creator_monthly = _getenv("STRIPE_CREATOR_MONTHLY_PRICE_ID")
        self.stripe_price_creator_yearly = _getenv("STRIPE_CREATOR_YEARLY_PRICE_ID")
        self.stripe_price_pro_monthly = _getenv("STRIPE_PRO_MONTHLY_PRICE_ID")
        self.stripe_price_pro_yearly = _getenv("STRIPE_PRO_YEARLY_PRICE_ID")
        self.stripe_credit_pack_prices = {
            "pack_5": _getenv("STRIPE_CREDIT_PACK_5_PRICE_ID"),
            "pack_25": _getenv("STRIPE_CREDIT_PACK_25_PRICE_ID"),
            "pack_50": _getenv("STRIPE_CREDIT_PACK_50_PRICE_ID"),
            "pack_100": _getenv("STRIPE_CREDIT_PACK_100_PRICE_ID"),
            "pack_500": _getenv("STRIPE_CREDIT_PACK_500_PRICE_ID"),
        }

        self.signup_bonus_credits = _getenv_int("SIGNUP_BONUS_CREDITS", 2)
        self.job_timeout_default_s = _getenv_int("JOB_TIMEOUT_DEFAULT_S", 15 * 60)
        self.job_timeout_veo_standard_s = _getenv_int("JOB_TIMEOUT_VEO_STANDARD_S", 20 * 60)
        self.job_timeout_veo_fast_s = _getenv_int("JOB_TIMEOUT_VEO_FAST_S", 5 * 60)
        self.translation_concurrency = max(1, _getenv_int("TRANSLATION_CONCURRENCY", 5))

        self.worker_secret = _getenv("WORKER_SECRET") or self.supabase_service_role_key
        self.task_max_attempts = max(1, _getenv_int("TASK_MAX_ATTEMPTS", 5))
        self.task_backoff_base_s = _getenv_float("TASK_BACKOFF_BASE_S", 5.0)
        self.task_backoff_max_s = _getenv_float("TASK_BACKOFF_MAX_S", 600.0)
        self.reconcile_poll_interval_s = _getenv_float("RECONCILE_POLL_INTERVAL_S", 10.0)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return ["http://localhost:3000", "http://localhost:8000"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()
