from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import quote

import httpx

from videogen.core.settings import settings

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


class SupabaseStorage:
    """Supabase Storage object API over REST, authenticated with the service role key."""

    def __init__(
        self,
        *,
        supabase_url: str,
        service_key: str,
        timeout_s: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base = f"{(supabase_url or '').rstrip('/')}/storage/v1"
        self._key = (service_key or "").strip()
        self._timeout_s = timeout_s
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {"authorization": f"Bearer {self._key}", "apikey": self._key}

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self._base}/object/public/{bucket}/{quote(path)}"

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        if not self._key:
            raise StorageError("SUPABASE_SERVICE_ROLE_KEY is not configured")
        async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout_s), transport=self._transport) as client:
            try:
                resp = await client.post(
                    f"{self._base}/object/{bucket}/{quote(path)}",
                    headers={**self._headers(), "content-type": content_type, "x-upsert": "true"},
                    content=data,
                )
            except httpx.HTTPError as e:
                raise StorageError(f"Storage upload failed: {e}") from e
        if resp.status_code >= 400:
            raise StorageError(f"Storage upload failed {resp.status_code}: {resp.text[:300]}")
        return self.public_url(bucket, path)

    async def remove(self, bucket: str, path: str) -> None:
        async with httpx.AsyncClient(timeout=httpx.Timeout(30.0), transport=self._transport) as client:
            resp = await client.request(
                "DELETE",
                f"{self._base}/object/{bucket}",
                headers=self._headers(),
                json={"prefixes": [path]},
            )
        if resp.status_code >= 400:
            raise StorageError(f"Storage remove failed {resp.status_code}: {resp.text[:300]}")


class LocalStorage:
    """Filesystem storage for development; files are served by the app under /media."""

    def __init__(self, *, root: str, public_base_url: str) -> None:
        self._root = Path(root)
        self._public_base_url = (public_base_url or "").rstrip("/")

    def _path(self, bucket: str, path: str) -> Path:
        target = (self._root / bucket / path).resolve()
        if self._root.resolve() not in target.parents:
            raise StorageError("Invalid storage path")
        return target

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self._public_base_url}/{bucket}/{quote(path)}"

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        target = self._path(bucket, path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Storage upload failed: {e}") from e
        return self.public_url(bucket, path)

    async def remove(self, bucket: str, path: str) -> None:
        self._path(bucket, path).unlink(missing_ok=True)


Storage = SupabaseStorage | LocalStorage

_storage: Storage | None = None


def build_storage() -> Storage:
    if settings.storage_backend == "supabase":
        if not settings.supabase_url:
            raise StorageError("SUPABASE_URL is required for the supabase storage backend")
        return SupabaseStorage(
            supabase_url=settings.supabase_url,
            service_key=settings.supabase_service_role_key or "",
            timeout_s=settings.artifact_download_timeout_s,
        )
    return LocalStorage(root=settings.storage_local_dir, public_base_url=settings.storage_public_base_url)


def get_storage() -> Storage:
    global _storage
    if _storage is None:
        _storage = build_storage()
        logger.info("storage.ready backend=%s", settings.storage_backend)
    return _storage
