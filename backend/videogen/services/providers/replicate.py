from __future__ import annotations

from typing import Any

from videogen.models.generation_job import JobStatus
from videogen.services.providers.base import HTTPProviderClient, ProviderError, ProviderStatus

MUSICGEN_VERSION = "671ac645ce5e552cc63a54a2bbff63fcf798043055d2dac5fc9e36a837eedcfb"


class ReplicateError(ProviderError):
    pass


_STATUS_MAP = {
    "starting": JobStatus.PENDING,
    "processing": JobStatus.PROCESSING,
    "succeeded": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
    "canceled": JobStatus.FAILED,
}


class ReplicateMusicClient(HTTPProviderClient):
    name = "Replicate"
    error_cls = ReplicateError

    async def create_prediction(self, *, prompt: str, duration_s: int) -> str:
        body = {
            "version": MUSICGEN_VERSION,
            "input": {
                "prompt": prompt,
                "duration": duration_s,
                "model_version": "stereo-melody-large",
                "output_format": "mp3",
                "normalization_strategy": "peak",
            },
        }
        payload = await self._request("POST", "/predictions", json=body)
        prediction_id = str((payload or {}).get("id") or "").strip() if isinstance(payload, dict) else ""
        if not prediction_id:
            raise ReplicateError("Replicate did not return a prediction id")
        return prediction_id

    async def prediction_status(self, prediction_id: str) -> ProviderStatus:
        payload = await self._request("GET", f"/predictions/{prediction_id}")
        if not isinstance(payload, dict):
            raise ReplicateError("Replicate returned an unexpected prediction payload")
        raw = str(payload.get("status") or "").strip().lower()
        state = _STATUS_MAP.get(raw, JobStatus.PROCESSING)
        output: Any = payload.get("output")
        if isinstance(output, list):
            output = output[0] if output else None
        if state == JobStatus.COMPLETED and not output:
            return ProviderStatus(state=JobStatus.FAILED, error="No audio output returned")
        error = payload.get("error")
        if raw == "canceled" and not error:
            error = "Music generation was canceled"
        return ProviderStatus(state=state, output_url=str(output) if output else None, error=str(error) if error else None)
