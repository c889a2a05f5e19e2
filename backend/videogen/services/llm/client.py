import asyncio
import logging
import random
import weakref
from dataclasses import dataclass
from typing import Any

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI, RateLimitError

from videogen.core.settings import settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({408, 409, 425, 429, 500, 502, 503, 504})
MAX_RETRY_SLEEP_S = 15.0


class LLMDisabledError(RuntimeError):
    pass


# One semaphore per event loop; TestClient and asyncio.run each bring their own loop.
_semaphores: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Semaphore]" = weakref.WeakKeyDictionary()


def _semaphore() -> asyncio.Semaphore:
    loop = asyncio.get_running_loop()
    sem = _semaphores.get(loop)
    if sem is None:
        sem = asyncio.Semaphore(max(1, settings.llm_concurrency))
        _semaphores[loop] = sem
    return sem


def _retry_delay(attempt: int) -> float:
    return min(MAX_RETRY_SLEEP_S, settings.llm_retry_base_s * (2 ** (attempt - 1)) + random.random() * 0.25)


@dataclass(frozen=True)
class Completion:
    content: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None


class OpenAICompatibleLLM:
    """Chat-completions client for script writing and translation (OpenAI or OpenRouter)."""

    def __init__(
        self,
        api_key: str,
        base_url: str | None,
        model: str,
        temperature: float,
        extra_headers: dict[str, str] | None = None,
        timeout_s: float = 60.0,
    ) -> None:
        kwargs: dict[str, Any] = {
            "api_key": api_key,
            "http_client": httpx.AsyncClient(
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
                timeout=httpx.Timeout(timeout_s),
            ),
        }
        if base_url:
            kwargs["base_url"] = base_url
        if extra_headers:
            kwargs["default_headers"] = extra_headers
        self._client = AsyncOpenAI(**kwargs)
        self.model = model
        self.temperature = temperature

    async def aclose(self) -> None:
        await self._client.close()

    async def complete(
        self,
        *,
        system: str,
        user: str,
        max_tokens: int = 2000,
        temperature: float | None = None,
        purpose: str = "",
    ) -> Completion:
        response = await self._create(
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            max_tokens=max_tokens,
            temperature=self.temperature if temperature is None else temperature,
            purpose=purpose,
        )
        choices = getattr(response, "choices", None) or []
        content = str(getattr(choices[0].message, "content", "") or "").strip() if choices else ""
        if not content:
            raise RuntimeError("LLM returned an empty response")
        usage = getattr(response, "usage", None)
        return Completion(
            content=content,
            prompt_tokens=getattr(usage, "prompt_tokens", None),
            completion_tokens=getattr(usage, "completion_tokens", None),
        )

    async def _create(self, *, messages: list[dict[str, str]], max_tokens: int, temperature: float, purpose: str) -> Any:
        max_attempts = max(1, settings.llm_max_retries)
        async with _semaphore():
            for attempt in range(1, max_attempts + 1):
                try:
                    response = await self._client.chat.completions.create(
                        model=self.model,
                        messages=messages,
                        temperature=temperature,
                        max_tokens=max_tokens,
                    )
                except APIStatusError as e:
                    if e.status_code == 402:
                        raise LLMDisabledError("LLM provider: insufficient credits on the configured account.")
                    if e.status_code not in RETRYABLE_STATUS or attempt == max_attempts:
                        raise
                    error: Exception = e
                except (APIConnectionError, APITimeoutError, RateLimitError) as e:
                    if attempt == max_attempts:
                        raise
                    error = e
                else:
                    usage = getattr(response, "usage", None)
                    logger.info(
                        "llm.request_done model=%s purpose=%s attempt=%s prompt_tokens=%s completion_tokens=%s",
                        self.model,
                        purpose,
                        attempt,
                        getattr(usage, "prompt_tokens", None),
                        getattr(usage, "completion_tokens", None),
                    )
                    return response

                delay = _retry_delay(attempt)
                logger.warning(
                    "llm.retry model=%s purpose=%s attempt=%s delay_s=%.2f error=%s",
                    self.model,
                    purpose,
                    attempt,
                    delay,
                    type(error).__name__,
                )
                await asyncio.sleep(delay)
        raise RuntimeError("LLM call failed")


_llm: OpenAICompatibleLLM | None = None


def get_llm_client() -> OpenAICompatibleLLM:
    global _llm
    if _llm is not None:
        return _llm
    if not settings.llm_api_key:
        raise LLMDisabledError("AI features are not configured")
    if not settings.llm_model:
        raise LLMDisabledError("LLM model is not configured. Set the LLM_MODEL (or OPENROUTER_MODEL) environment variable.")

    extra_headers: dict[str, str] = {}
    if settings.llm_base_url and "openrouter.ai" in settings.llm_base_url:
        if settings.openrouter_site_url:
            extra_headers["HTTP-Referer"] = settings.openrouter_site_url
        if settings.openrouter_app_name:
            extra_headers["X-Title"] = settings.openrouter_app_name

    _llm = OpenAICompatibleLLM(
        api_key=settings.llm_api_key,
        base_url=settings.llm_base_url,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        extra_headers=extra_headers or None,
        timeout_s=settings.llm_timeout_s,
    )
    return _llm


async def close_llm_client() -> None:
    global _llm
    if _llm is not None:
        await _llm.aclose()
        _llm = None
