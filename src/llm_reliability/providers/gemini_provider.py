"""Google Gemini provider client using the google-genai SDK."""

from __future__ import annotations

from google import genai
from google.genai import errors, types

from llm_reliability.exceptions import (
    ProviderAuthError,
    ProviderError,
    ProviderRateLimitedError,
    ProviderRequestError,
    ProviderServerError,
)
from llm_reliability.models.domain import ProviderRequest, ProviderResponse
from llm_reliability.observability.logger import get_logger

logger = get_logger("gemini")


class GeminiProvider:
    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        name: str = "gemini",
        capabilities: frozenset[str] = frozenset({"chat"}),
    ) -> None:
        self.name = name
        self.capabilities = capabilities
        self._client = genai.Client(api_key=api_key)
        self._model = model

    async def invoke(self, request: ProviderRequest) -> ProviderResponse:
        config = types.GenerateContentConfig(
            temperature=request.temperature,
            max_output_tokens=request.max_tokens,
        )
        if request.system:
            config.system_instruction = request.system

        try:
            response = await self._client.aio.models.generate_content(
                model=self._model,
                contents=request.prompt,
                config=config,
            )
        except errors.APIError as e:
            raise self._translate(e) from e
        except Exception as e:
            raise ProviderServerError(self.name, f"Gemini generation failed: {e}") from e

        usage = response.usage_metadata
        return ProviderResponse(
            content=response.text or "",
            model=self._model,
            tokens_in=(usage.prompt_token_count or 0) if usage else 0,
            tokens_out=(usage.candidates_token_count or 0) if usage else 0,
        )

    async def health_check(self) -> bool:
        try:
            await self._client.aio.models.get(model=self._model)
            return True
        except Exception as e:
            logger.warning("health_check_failed", provider=self.name, error=str(e))
            return False

    def _translate(self, error: errors.APIError) -> ProviderError:
        code = error.code or 500
        if code in (401, 403):
            return ProviderAuthError(self.name, str(error))
        if code == 429:
            return ProviderRateLimitedError(self.name, str(error))
        if code >= 500:
            return ProviderServerError(self.name, str(error))
        return ProviderRequestError(self.name, str(error))
