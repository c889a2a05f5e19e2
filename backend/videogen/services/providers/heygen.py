from __future__ import annotations

from typing import Any

from videogen.models.generation_job import JobStatus
from videogen.services.providers.base import HTTPProviderClient, ProviderError, ProviderStatus


class HeyGenError(ProviderError):
    pass


NO_VIDEO_MESSAGE = "HeyGen finished without returning a video"

_STATUS_MAP = {
    "completed": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
    "processing": JobStatus.PROCESSING,
    "waiting": JobStatus.PENDING,
    "pending": JobStatus.PENDING,
}


class HeyGenClient(HTTPProviderClient):
    name = "HeyGen"
    error_cls = HeyGenError

    def _auth_headers(self) -> dict[str, str]:
        return {"X-Api-Key": self._api_key}

    @staticmethod
    def _data(payload: Any) -> dict[str, Any]:
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise HeyGenError("HeyGen returned an unexpected response")
        return data

    async def list_avatars(self) -> list[dict[str, Any]]:
        data = self._data(await self._request("GET", "/v2/avatars"))
        return [a for a in data.get("avatars") or [] if isinstance(a, dict)]

    async def list_voices(self) -> list[dict[str, Any]]:
        data = self._data(await self._request("GET", "/v2/voices"))
        return [v for v in data.get("voices") or [] if isinstance(v, dict)]

    async def generate_video(
        self,
        *,
        script: str,
        voice_id: str,
        avatar_id: str | None = None,
        talking_photo_id: str | None = None,
        dimension: dict[str, int] | None = None,
    ) -> str:
        if talking_photo_id:
            character: dict[str, Any] = {"type": "talking_photo", "talking_photo_id": talking_photo_id}
        else:
            character = {"type": "avatar", "avatar_id": avatar_id, "avatar_style": "normal"}
        body: dict[str, Any] = {
            "video_inputs": [
                {
                    "character": character,
                    "voice": {"type": "text", "input_text": script, "voice_id": voice_id},
                }
            ],
        }
        if dimension:
            body["dimension"] = dimension
        data = self._data(await self._request("POST", "/v2/video/generate", json=body))
        video_id = str(data.get("video_id") or "").strip()
        if not video_id:
            raise HeyGenError("HeyGen did not return a video id")
        return video_id

    async def create_photo_avatar(self, *, name: str, photo_base64: str, mime_type: str) -> str:
        body = {"name": name, "image": {"type": "base64", "data": photo_base64, "mime_type": mime_type}}
        data = self._data(await self._request("POST", "/v2/photo_avatar", json=body))
        avatar_id = str(data.get("avatar_id") or "").strip()
        if not avatar_id:
            raise HeyGenError("HeyGen did not return an avatar id")
        return avatar_id

    async def video_status(self, video_id: str) -> ProviderStatus:
        data = self._data(await self._request("GET", "/v1/video_status.get", params={"video_id": video_id}))
        raw_status = str(data.get("status") or "").strip().lower()
        error = data.get("error")
        if isinstance(error, dict):
            error = error.get("message") or error.get("detail")
        duration = data.get("duration")
        state = _STATUS_MAP.get(raw_status, JobStatus.PROCESSING)
        video_url = data.get("video_url") or None
        if state == JobStatus.COMPLETED and not video_url:
            return ProviderStatus(state=JobStatus.FAILED, error=NO_VIDEO_MESSAGE)
        return ProviderStatus(
            state=state,
            output_url=video_url,
            thumbnail_url=data.get("thumbnail_url") or None,
            duration_seconds=int(round(float(duration))) if isinstance(duration, (int, float)) else None,
            error=str(error) if error else None,
        )
