from __future__ import annotations

import logging
from typing import Any

import httpx

from videogen.core.settings import settings
from videogen.services.storage import Storage, StorageError, get_storage

logger = logging.getLogger(__name__)


def artifact_path(owner_id: str, job_id: str, extension: str) -> str:
    return f"{owner_id}/{job_id}.{extension.lstrip('.')}"


class ArtifactPersister:
    """Copies time-limited provider downloads into durable storage.

    ``persist`` never raises: a failed copy returns None so the caller can keep
    the provider URL and still complete the job.
    """

    def __init__(
        self,
        storage: Storage,
        *,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.storage = storage
        self._timeout_s = timeout_s or settings.artifact_download_timeout_s
        self._transport = transport

    async def _download(self, url: str, params: dict[str, Any] | None) -> bytes:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout_s),
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            resp = await client.get(url, params=params)
            resp.raise_for_status()
            return resp.content

    async def persist(
        self,
        provider_url: str,
        owner_id: str,
        job_id: str,
        *,
        bucket: str,
        extension: str = "mp4",
        content_type: str = "video/mp4",
        auth_params: dict[str, Any] | None = None,
    ) -> str | None:
        if not provider_url:
            return None
        path = artifact_path(owner_id, job_id, extension)
        try:
            data = await self._download(provider_url, auth_params)
            if not data:
                logger.warning("artifact.empty_download job=%s", job_id)
                return None
            url = await self.storage.upload(bucket, path, data, content_type)
        except (httpx.HTTPError, StorageError, OSError) as e:
            logger.warning("artifact.persist_failed job=%s path=%s error=%s", job_id, path, e)
            return None
        except Exception:
            logger.exception("artifact.persist_failed job=%s path=%s", job_id, path)
            return None
        logger.info("artifact.persisted job=%s bucket=%s path=%s bytes=%s", job_id, bucket, path, len(data))
        return url

    async def remove(self, owner_id: str, job_id: str, *, bucket: str, extension: str = "mp4") -> None:
        path = artifact_path(owner_id, job_id, extension)
        try:
            await self.storage.remove(bucket, path)
        except (httpx.HTTPError, StorageError, OSError) as e:
            logger.warning("artifact.remove_failed job=%s path=%s error=%s", job_id, path, e)


_persister: ArtifactPersister | None = None


def get_artifacts() -> ArtifactPersister:
    global _persister
    if _persister is None:
        _persister = ArtifactPersister(get_storage())
    return _persister
