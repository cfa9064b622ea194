"""Protocol for the knowledge base collaborator."""

from __future__ import annotations

from typing import Protocol

from llm_reliability.models.domain import KnowledgeResult


class KnowledgeSource(Protocol):
    async def search_knowledge(
        self, query: str, filters: dict | None = None
    ) -> list[KnowledgeResult]: ...
