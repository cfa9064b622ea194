"""Default knowledge base collaborator: BM25 keyword search over curated snippets."""

from __future__ import annotations

import asyncio
import json
import os

import numpy as np
from rank_bm25 import BM25Okapi

from llm_reliability.knowledge.tokenizer import tokenize
from llm_reliability.models.domain import KnowledgeResult
from llm_reliability.observability.logger import get_logger

logger = get_logger("knowledge_base")


class BM25KnowledgeBase:
    """Snippets are dicts with ``text`` and optional ``id``, ``source``,
    ``reliability`` (0-1) and ``subject`` keys.

    Relevance is the BM25 score divided by the best score for the query, so the
    top hit is always 1.0.
    """

    def __init__(self, snippets: list[dict] | None = None) -> None:
        self._snippets: list[dict] = []
        self._bm25: BM25Okapi | None = None
        self._write_lock = asyncio.Lock()
        if snippets:
            self.build(snippets)

    @classmethod
    def from_file(cls, path: str) -> BM25KnowledgeBase:
        if not os.path.exists(path):
            logger.info("knowledge_file_missing", path=path)
            return cls()
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        kb = cls(data if isinstance(data, list) else data.get("snippets", []))
        logger.info("knowledge_loaded", path=path, size=kb.size)
        return kb

    def build(self, snippets: list[dict]) -> None:
        self._snippets = [
            {
                "id": str(s.get("id", i)),
                "text": s["text"],
                "source": s.get("source", "knowledge_base"),
                "reliability": float(s.get("reliability", 0.8)),
                "subject": s.get("subject"),
            }
            for i, s in enumerate(snippets)
        ]
        corpus = [tokenize(s["text"]) for s in self._snippets]
        self._bm25 = BM25Okapi(corpus) if corpus else None

    async def add(self, snippets: list[dict]) -> None:
        async with self._write_lock:
            await asyncio.to_thread(self.build, self._snippets + snippets)

    async def search_knowledge(
        self, query: str, filters: dict | None = None, top_k: int = 5
    ) -> list[KnowledgeResult]:
        if self._bm25 is None:
            return []
        tokens = tokenize(query)
        if not tokens:
            return []
        filters = filters or {}
        min_reliability = float(filters.get("min_reliability", 0.0))
        subject = filters.get("subject")
        top_k = int(filters.get("top_k", top_k))

        scores = self._bm25.get_scores(tokens)
        order = np.argsort(scores)[::-1]
        best = float(scores[order[0]]) if len(order) else 0.0
        if best <= 0:
            return []

        results: list[KnowledgeResult] = []
        for i in order:
            score = float(scores[i])
            if score <= 0 or len(results) >= top_k:
                break
            s = self._snippets[i]
            if s["reliability"] < min_reliability:
                continue
            if subject and s["subject"] and s["subject"] != subject:
                continue
            results.append(
                KnowledgeResult(
                    snippet_id=s["id"],
                    text=s["text"],
                    source=s["source"],
                    relevance=score / best,
                    reliability=s["reliability"],
                )
            )
        return results

    @property
    def size(self) -> int:
        return len(self._snippets)
