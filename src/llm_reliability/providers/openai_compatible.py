"""Provider client for OpenAI-compatible chat endpoints (Groq, Cerebras, Mistral, OpenRouter)."""

from __future__ import annotations

import openai
from openai import AsyncOpenAI

from llm_reliability.exceptions import (
    ProviderAuthError,
    ProviderConnectionError,
    ProviderError,
    ProviderRateLimitedError,
    ProviderRequestError,
    ProviderServerError,
    ProviderTimeoutError,
)
from llm_reliability.models.domain import ProviderRequest, ProviderResponse
from llm_reliability.observability.logger import get_logger

logger = get_logger("openai_compatible")


class OpenAICompatibleProvider:
    def __init__(
        self,
        name: str,
        api_key: str,
        model: str,
        base_url: str | None = None,
        capabilities: frozenset[str] = frozenset({"chat"}),
    ) -> None:
        self.name = name
        self.capabilities = capabilities
        self._model = model
        # Timeouts and retries are owned by the resilience layer.
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)

    async def invoke(self, request: ProviderRequest) -> ProviderResponse:
        messages = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.append({"role": "user", "content": request.prompt})

        try:
            completion = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
            )
        except Exception as e:
            raise translate_openai_error(self.name, e) from e

        usage = completion.usage
        return ProviderResponse(
            content=completion.choices[0].message.content or "",
            model=completion.model or self._model,
            tokens_in=usage.prompt_tokens if usage else 0,
            tokens_out=usage.completion_tokens if usage else 0,
        )

    async def health_check(self) -> bool:
        try:
            await self._client.models.list()
            return True
        except Exception as e:
            logger.warning("health_check_failed", provider=self.name, error=str(e))
            return False


def translate_openai_error(provider: str, error: Exception) -> ProviderError:
    """Map an openai SDK exception onto the provider error hierarchy."""
    if isinstance(error, openai.APITimeoutError):
        return ProviderTimeoutError(provider, str(error))
    if isinstance(error, openai.APIConnectionError):
        return ProviderConnectionError(provider, str(error))
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ProviderAuthError(provider, str(error))
    if isinstance(error, openai.RateLimitError):
        retry_after = error.response.headers.get("retry-after", "0") if error.response else "0"
        try:
            seconds = float(retry_after)
        except ValueError:
            seconds = 0.0
        return ProviderRateLimitedError(provider, str(error), retry_after_s=seconds)
    if isinstance(error, openai.APIStatusError):
        if error.status_code >= 500:
            return ProviderServerError(provider, str(error))
        return ProviderRequestError(provider, str(error))
    return ProviderServerError(provider, str(error))
