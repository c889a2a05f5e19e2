from __future__ import annotations

from dataclasses import dataclass

from videogen.core.settings import settings
from videogen.services.providers.heygen import HeyGenClient
from videogen.services.providers.nanobanana import NanoBananaClient
from videogen.services.providers.replicate import ReplicateMusicClient
from videogen.services.providers.veo import VeoClient


@dataclass
class ProviderRegistry:
    heygen: HeyGenClient
    veo: VeoClient
    nanobanana: NanoBananaClient
    replicate: ReplicateMusicClient

    @classmethod
    def from_settings(cls) -> "ProviderRegistry":
        timeout_s = settings.provider_timeout_s
        return cls(
            heygen=HeyGenClient(api_key=settings.heygen_api_key, base_url=settings.heygen_base_url, timeout_s=timeout_s),
            veo=VeoClient(api_key=settings.google_ai_api_key, base_url=settings.veo_base_url, timeout_s=timeout_s),
            nanobanana=NanoBananaClient(
                api_key=settings.nanobanana_api_key,
                base_url=settings.nanobanana_base_url,
                status_url=settings.nanobanana_status_url,
                timeout_s=timeout_s,
            ),
            replicate=ReplicateMusicClient(
                api_key=settings.replicate_api_token,
                base_url=settings.replicate_base_url,
                timeout_s=timeout_s,
            ),
        )

    async def aclose(self) -> None:
        for client in (self.heygen, self.veo, self.nanobanana, self.replicate):
            await client.aclose()


_registry: ProviderRegistry | None = None


def get_providers() -> ProviderRegistry:
    global _registry
    if _registry is None:
        _registry = ProviderRegistry.from_settings()
    return _registry
