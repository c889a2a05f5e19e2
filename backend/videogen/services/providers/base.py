from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from videogen.models.generation_job import JobStatus


class ProviderError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderNotConfiguredError(ProviderError):
    pass


@dataclass
class ProviderStatus:
    """Provider-reported job state mapped onto the local status enum."""

    state: JobStatus
    output_url: str | None = None
    output_urls: list[str] = field(default_factory=list)
    thumbnail_url: str | None = None
    duration_seconds: int | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.state == JobStatus.FAILED

    @property
    def completed(self) -> bool:
        return self.state == JobStatus.COMPLETED


class HTTPProviderClient:
    """Shared httpx plumbing for the vendor clients."""

    name = "provider"
    error_cls: type[ProviderError] = ProviderError

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._base_url = (base_url or "").rstrip("/")
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_s), transport=transport)

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    async def _request(self, method: str, url: str, *, json: Any = None, params: dict[str, Any] | None = None) -> Any:
        if not self._api_key:
            raise ProviderNotConfiguredError(f"{self.name} API key is not configured")
        if not url.startswith("http"):
            url = f"{self._base_url}{url}"

        try:
            resp = await self._client.request(
                method,
                url,
                headers={**self._auth_headers(), "Content-Type": "application/json"},
                json=json,
                params=params,
            )
        except httpx.HTTPError as e:
            raise self.error_cls(f"{self.name} request failed: {e}") from e

        if resp.status_code >= 400:
            detail = resp.text[:500]
            raise self.error_cls(f"{self.name} API error {resp.status_code}: {detail}", status_code=resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            raise self.error_cls(f"{self.name} returned invalid JSON: {e}") from e
