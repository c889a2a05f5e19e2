from __future__ import annotations

import json
from typing import Any

from videogen.models.generation_job import JobStatus
from videogen.services.providers.base import HTTPProviderClient, ProviderError, ProviderStatus


class VeoError(ProviderError):
    pass


def styled_prompt(prompt: str, style: str | None) -> str:
    style = (style or "").strip()
    if not style:
        return prompt
    return f"{prompt}\n\nStyle: {style}"


def _inline_image(image: dict[str, str]) -> dict[str, str]:
    return {"bytesBase64Encoded": image["base64"], "mimeType": image["mime_type"]}


class VeoClient(HTTPProviderClient):
    """Google Veo long-running video operations over the Generative Language REST API."""

    name = "Google Veo"
    error_cls = VeoError

    def _auth_headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key}

    @property
    def api_key(self) -> str:
        return self._api_key

    async def _start(self, model: str, instance: dict[str, Any], parameters: dict[str, Any]) -> str:
        payload = await self._request(
            "POST",
            f"/models/{model}:predictLongRunning",
            json={"instances": [instance], "parameters": parameters},
        )
        name = str((payload or {}).get("name") or "").strip() if isinstance(payload, dict) else ""
        if not name:
            raise VeoError("Veo API did not return an operation name")
        return name

    async def generate(
        self,
        *,
        model: str,
        prompt: str,
        duration_s: int,
        aspect_ratio: str,
        negative_prompt: str | None = None,
        reference_images: list[dict[str, str]] | None = None,
        start_frame: dict[str, str] | None = None,
        end_frame: dict[str, str] | None = None,
        generate_audio: bool = False,
        resolution: str | None = None,
    ) -> str:
        instance: dict[str, Any] = {"prompt": prompt}
        if start_frame:
            instance["image"] = _inline_image(start_frame)
        if end_frame:
            instance["lastFrame"] = _inline_image(end_frame)
        if reference_images:
            instance["referenceImages"] = [
                {"image": _inline_image(img), "referenceType": "asset"} for img in reference_images
            ]
        parameters: dict[str, Any] = {
            "sampleCount": 1,
            "durationSeconds": duration_s,
            "aspectRatio": aspect_ratio,
        }
        if negative_prompt:
            parameters["negativePrompt"] = negative_prompt
        if generate_audio:
            parameters["generateAudio"] = True
        if resolution:
            parameters["resolution"] = resolution
        return await self._start(model, instance, parameters)

    async def extend(self, *, model: str, prompt: str, video_uri: str, duration_s: int | None = None) -> str:
        parameters: dict[str, Any] = {"sampleCount": 1}
        if duration_s:
            parameters["durationSeconds"] = duration_s
        return await self._start(model, {"prompt": prompt, "video": {"uri": video_uri}}, parameters)

    async def operation_status(self, operation_name: str) -> ProviderStatus:
        payload = await self._request("GET", f"/{operation_name.lstrip('/')}")
        if not isinstance(payload, dict):
            raise VeoError("Veo returned an unexpected operation payload")

        error = payload.get("error")
        if error:
            # Finished with an error is still a failure.
            return ProviderStatus(state=JobStatus.FAILED, error=json.dumps(error) if not isinstance(error, str) else error)

        if not payload.get("done"):
            return ProviderStatus(state=JobStatus.PROCESSING)

        response = payload.get("response") or {}
        samples = ((response.get("generateVideoResponse") or {}).get("generatedSamples")) or []
        uri = None
        if samples and isinstance(samples[0], dict):
            uri = (samples[0].get("video") or {}).get("uri")
        if not uri:
            filtered = (response.get("generateVideoResponse") or {}).get("raiMediaFilteredReasons")
            reason = filtered[0] if isinstance(filtered, list) and filtered else "Veo finished without returning a video"
            return ProviderStatus(state=JobStatus.FAILED, error=str(reason))
        return ProviderStatus(state=JobStatus.COMPLETED, output_url=str(uri))
