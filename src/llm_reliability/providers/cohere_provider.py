"""Cohere chat provider over plain HTTP (v2 chat API)."""

from __future__ import annotations

import httpx

from llm_reliability.exceptions import (
    ProviderAuthError,
    ProviderConnectionError,
    ProviderRateLimitedError,
    ProviderRequestError,
    ProviderServerError,
    ProviderTimeoutError,
)
from llm_reliability.models.domain import ProviderRequest, ProviderResponse
from llm_reliability.observability.logger import get_logger

logger = get_logger("cohere")


class CohereProvider:
    def __init__(
        self,
        api_key: str,
        model: str = "command-r",
        base_url: str = "https://api.cohere.com/v2",
        name: str = "cohere",
        capabilities: frozenset[str] = frozenset({"chat"}),
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.name = name
        self.capabilities = capabilities
        self._model = model
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=httpx.Timeout(None),
        )

    async def invoke(self, request: ProviderRequest) -> ProviderResponse:
        messages = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.append({"role": "user", "content": request.prompt})

        try:
            resp = await self._client.post(
                "/chat",
                json={
                    "model": self._model,
                    "messages": messages,
                    "temperature": request.temperature,
                    "max_tokens": request.max_tokens,
                },
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(self.name, str(e)) from e
        except httpx.TransportError as e:
            raise ProviderConnectionError(self.name, str(e)) from e

        self._raise_for_status(resp)
        data = resp.json()
        parts = data.get("message", {}).get("content", [])
        text = "".join(p.get("text", "") for p in parts if p.get("type") == "text")
        tokens = data.get("usage", {}).get("tokens", {})
        return ProviderResponse(
            content=text,
            model=self._model,
            tokens_in=int(tokens.get("input_tokens", 0)),
            tokens_out=int(tokens.get("output_tokens", 0)),
        )

    async def health_check(self) -> bool:
        try:
            resp = await self._client.get("/models", params={"page_size": 1})
            return resp.status_code == 200
        except httpx.HTTPError as e:
            logger.warning("health_check_failed", provider=self.name, error=str(e))
            return False

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        detail = resp.text[:200]
        if resp.status_code in (401, 403):
            raise ProviderAuthError(self.name, detail)
        if resp.status_code == 429:
            retry_after = resp.headers.get("retry-after", "0")
            try:
                seconds = float(retry_after)
            except ValueError:
                seconds = 0.0
            raise ProviderRateLimitedError(self.name, detail, retry_after_s=seconds)
        if resp.status_code >= 500:
            raise ProviderServerError(self.name, detail)
        raise ProviderRequestError(self.name, detail)
