"""Protocol for upstream model providers."""

from __future__ import annotations

from typing import Protocol

from llm_reliability.models.domain import ProviderRequest, ProviderResponse


class ProviderClient(Protocol):
    name: str
    capabilities: frozenset[str]

    async def invoke(self, request: ProviderRequest) -> ProviderResponse: ...

    async def health_check(self) -> bool: ...
