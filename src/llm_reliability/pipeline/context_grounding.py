"""Stage 2: assemble profile, knowledge and history into a token-bounded context."""

from __future__ import annotations

import re
import threading
from collections import deque
from collections.abc import Callable

import tiktoken

from llm_reliability.config.settings import Settings
from llm_reliability.knowledge.tokenizer import content_terms
from llm_reliability.models.domain import (
    ContextItem,
    GroundedContext,
    KnowledgeResult,
    ProviderRequest,
    Query,
)
from llm_reliability.observability.logger import get_logger
from llm_reliability.pipeline.feedback import LearningPatternBook
from llm_reliability.pipeline.prompt_templates import (
    USER_PROMPT,
    format_context_block,
    format_system_prompt,
)
from llm_reliability.protocols.knowledge import KnowledgeSource

logger = get_logger("context_grounding")

# Lower rank is dropped first when relevance ties.
_DROP_RANK = {"history": 0, "knowledge": 1, "profile": 2}

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def _overlap(query_terms: set[str], text: str) -> float:
    if not query_terms:
        return 0.0
    return len(query_terms & content_terms(text)) / len(query_terms)


class ProfileStore:
    """In-process user profile facts, supplied by the caller with each message."""

    def __init__(self) -> None:
        self._profiles: dict[str, dict[str, str]] = {}
        self._lock = threading.Lock()

    def update(self, user_id: str, facts: dict[str, str]) -> None:
        if not facts:
            return
        with self._lock:
            self._profiles.setdefault(user_id, {}).update(
                {str(k): str(v) for k, v in facts.items()}
            )

    def facts(self, user_id: str) -> list[str]:
        with self._lock:
            profile = dict(self._profiles.get(user_id, {}))
        return [f"{k.replace('_', ' ')}: {v}" for k, v in profile.items()]


class ConversationHistory:
    """Bounded per-session memory of recent (user, assistant) turns."""

    def __init__(self, max_turns: int = 10) -> None:
        self._max_turns = max_turns
        self._sessions: dict[str, deque[tuple[str, str]]] = {}
        self._lock = threading.Lock()

    def append(self, session_id: str, user_text: str, assistant_text: str) -> None:
        with self._lock:
            turns = self._sessions.get(session_id)
            if turns is None:
                turns = deque(maxlen=self._max_turns)
                self._sessions[session_id] = turns
            turns.append((user_text, assistant_text))

    def turns(self, session_id: str) -> list[tuple[str, str]]:
        with self._lock:
            return list(self._sessions.get(session_id, ()))

    def assistant_texts(self, session_id: str) -> list[str]:
        return [a for _, a in self.turns(session_id)]

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


def tiktoken_counter(encoding_name: str) -> Callable[[str], int]:
    encoding = tiktoken.get_encoding(encoding_name)

    def count(text: str) -> int:
        return len(encoding.encode(text))

    return count


class ContextBuilder:
    def __init__(
        self,
        knowledge: KnowledgeSource,
        settings: Settings,
        profiles: ProfileStore | None = None,
        history: ConversationHistory | None = None,
        patterns: LearningPatternBook | None = None,
        token_counter: Callable[[str], int] | None = None,
    ) -> None:
        self._knowledge = knowledge
        self._settings = settings
        self._profiles = profiles or ProfileStore()
        self._history = history or ConversationHistory(settings.history_max_turns)
        self._patterns = patterns
        self._count = token_counter

    @property
    def history(self) -> ConversationHistory:
        return self._history

    @property
    def profiles(self) -> ProfileStore:
        return self._profiles

    def _tokens(self, text: str) -> int:
        if self._count is None:
            self._count = tiktoken_counter(self._settings.tiktoken_encoding)
        return self._count(text)

    async def build(self, query: Query) -> GroundedContext:
        classification = query.classification
        if classification is None:
            raise ValueError("query must be classified before grounding")
        text = query.text or query.raw_text
        query_terms = content_terms(text)

        items: list[ContextItem] = []

        for fact in self._profiles.facts(query.user_id):
            items.append(
                ContextItem("profile", fact, round(0.5 + 0.5 * _overlap(query_terms, fact), 4))
            )

        results: list[KnowledgeResult] = []
        if classification.type != "creative" or classification.requires_context:
            results = await self._knowledge.search_knowledge(
                text, {"min_reliability": 0.0, "top_k": self._settings.knowledge_top_k}
            )
        by_text: dict[str, KnowledgeResult] = {}
        for r in results[: self._settings.knowledge_top_k]:
            by_text.setdefault(r.text, r)
            items.append(
                ContextItem(
                    "knowledge",
                    r.text,
                    round(r.relevance, 4),
                    source=r.source,
                    reliability=r.reliability,
                )
            )

        turns = self._history.turns(query.session_id)
        n = len(turns)
        for i, (user_text, assistant_text) in enumerate(turns):
            turn = f"User: {user_text}\nAssistant: {assistant_text}"
            recency = (i + 1) / n
            items.append(
                ContextItem(
                    "history",
                    turn,
                    round(0.6 * _overlap(query_terms, turn) + 0.4 * recency, 4),
                )
            )

        for item in items:
            item.tokens = self._tokens(item.text)

        kept, dropped = self._truncate(items, self._settings.context_token_budget)

        sources = [by_text[i.text] for i in kept if i.kind == "knowledge"]
        fact_check_points: list[str] = []
        if classification.type in ("factual", "study"):
            for r in sources:
                if r.reliability >= self._settings.fact_check_min_reliability:
                    fact_check_points.extend(split_sentences(r.text))

        preventions = (
            self._patterns.preventions_for(classification.type) if self._patterns else []
        )

        context = GroundedContext(
            items=kept,
            fact_check_points=fact_check_points,
            sources=sources,
            token_count=sum(i.tokens for i in kept),
            dropped=dropped,
            preventions=preventions,
        )
        logger.info(
            "context_built",
            query_id=query.id,
            items=len(kept),
            dropped=dropped,
            tokens=context.token_count,
            sources=len(sources),
            fact_check_points=len(fact_check_points),
            preventions=len(preventions),
        )
        return context

    @staticmethod
    def _truncate(items: list[ContextItem], budget: int) -> tuple[list[ContextItem], int]:
        """Drop lowest-relevance items until the total fits the budget.

        Ties drop history before knowledge before profile, then later-added first.
        """
        total = sum(i.tokens for i in items)
        if total <= budget:
            return list(items), 0

        drop_order = sorted(
            range(len(items)),
            key=lambda idx: (items[idx].relevance, _DROP_RANK.get(items[idx].kind, 0), -idx),
        )
        removed: set[int] = set()
        for idx in drop_order:
            if total <= budget:
                break
            removed.add(idx)
            total -= items[idx].tokens
        kept = [item for idx, item in enumerate(items) if idx not in removed]
        return kept, len(removed)

    def build_request(self, query: Query, context: GroundedContext) -> ProviderRequest:
        profile = [i.text for i in context.items if i.kind == "profile"]
        knowledge = [i.text for i in context.items if i.kind == "knowledge"]
        history = [i.text for i in context.items if i.kind == "history"]
        strategy = query.classification.response_strategy if query.classification else ""
        return ProviderRequest(
            prompt=USER_PROMPT.format(
                context_block=format_context_block(profile, knowledge, history),
                query=query.text or query.raw_text,
            ),
            system=format_system_prompt(strategy, context.preventions),
            temperature=self._settings.provider_temperature,
            max_tokens=self._settings.provider_max_tokens,
        )
