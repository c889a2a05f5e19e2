from __future__ import annotations

from typing import Any

from videogen.models.generation_job import JobStatus
from videogen.services.providers.base import HTTPProviderClient, ProviderError, ProviderStatus


class NanoBananaError(ProviderError):
    pass


_STATUS_MAP = {
    "PENDING": JobStatus.PENDING,
    "PROCESSING": JobStatus.PROCESSING,
    "COMPLETED": JobStatus.COMPLETED,
    "FAILED": JobStatus.FAILED,
}


def _unwrap(payload: Any) -> dict[str, Any]:
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    if isinstance(payload, dict):
        return payload
    raise NanoBananaError("NanoBanana returned an unexpected response")


class NanoBananaClient(HTTPProviderClient):
    name = "NanoBanana"
    error_cls = NanoBananaError

    def __init__(self, *, status_url: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._status_url = (status_url or "").rstrip("/")

    async def generate_image(
        self,
        *,
        prompt: str,
        resolution: str = "1K",
        aspect_ratio: str = "1:1",
        output_format: str = "png",
        num_images: int = 1,
        image_urls: list[str] | None = None,
    ) -> str:
        body: dict[str, Any] = {
            "prompt": prompt,
            "generationType": "IMAGETOIMAGE" if image_urls else "TEXTTOIMAGE",
            "aspectRatio": aspect_ratio,
            "resolution": resolution,
            "outputFormat": output_format,
            "numImages": num_images,
        }
        if image_urls:
            body["imageUrls"] = image_urls
        data = _unwrap(await self._request("POST", "/generate", json=body))
        task_id = str(data.get("taskId") or "").strip()
        if not task_id:
            raise NanoBananaError("NanoBanana did not return a task id")
        return task_id

    async def task_status(self, task_id: str) -> ProviderStatus:
        data = _unwrap(await self._request("GET", f"{self._status_url}/record-info", params={"taskId": task_id}))
        raw = str(data.get("status") or "").strip().upper()
        urls = [u for u in (data.get("imageUrls") or []) if isinstance(u, str) and u]
        state = _STATUS_MAP.get(raw, JobStatus.PROCESSING)
        if state == JobStatus.COMPLETED and not urls:
            return ProviderStatus(state=JobStatus.FAILED, error="Image generation finished without output")
        return ProviderStatus(
            state=state,
            output_url=urls[0] if urls else None,
            output_urls=urls,
            error=str(data.get("error")) if data.get("error") else None,
        )
