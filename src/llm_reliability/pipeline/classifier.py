"""Heuristic query classification with a content-hash cache."""

from __future__ import annotations

import hashlib
import re
import threading
from collections import OrderedDict

from langdetect import DetectorFactory, LangDetectException, detect

from llm_reliability.models.domain import QueryClassification
from llm_reliability.observability.logger import get_logger

logger = get_logger("classifier")

DetectorFactory.seed = 0

DIAGNOSTIC_CUES = ("error", "bug", "not working", "doesn't work", "broken", "crash", "fails",
                   "failing", "debug", "traceback", "exception", "fix my", "troubleshoot")
CREATIVE_CUES = ("write a", "write me", "poem", "story", "imagine", "compose", "lyrics",
                 "brainstorm", "invent", "creative", "haiku")
STUDY_CUES = ("explain", "teach me", "help me understand", "how does", "why does", "homework",
              "study", "exam", "quiz", "practice", "solve", "step by step", "learn")
FACTUAL_CUES = ("what is", "what are", "who is", "who was", "when did", "when was", "where is",
                "how many", "how much", "which", "capital of", "define", "population", "date of")
CONTEXT_CUES = ("my ", "i am", "i'm", "last time", "previous", "earlier", "we discussed",
                "as before", "again", "continue", "my progress", "my grades")

STRATEGIES = {
    "factual": "concise_fact",
    "creative": "open_ended",
    "study": "guided_explanation",
    "diagnostic": "step_by_step_troubleshooting",
    "general": "conversational",
}


class QueryClassifier:
    def __init__(self, cache_size: int = 2048) -> None:
        self._cache: OrderedDict[str, QueryClassification] = OrderedDict()
        self._cache_size = cache_size
        self._lock = threading.Lock()

    def classify(self, text: str) -> QueryClassification:
        key = hashlib.sha256(text.lower().encode("utf-8")).hexdigest()
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                return cached

        classification = self._compute(text)
        with self._lock:
            self._cache[key] = classification
            if len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        logger.info(
            "query_classified",
            type=classification.type,
            complexity=classification.complexity,
            requires_facts=classification.requires_facts,
            language=classification.language,
        )
        return classification

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def _compute(self, text: str) -> QueryClassification:
        q = text.lower()
        query_type = self._classify_type(q)
        complexity = self._complexity(text)
        requires_facts = query_type in ("factual", "study") or bool(
            re.search(r"\b(18|19|20)\d{2}\b|\d+\s*(km|kg|%|percent)", q)
        )
        requires_context = query_type == "study" or any(c in q for c in CONTEXT_CUES)

        try:
            language = detect(text)
        except LangDetectException:
            language = "en"

        return QueryClassification(
            type=query_type,
            complexity=complexity,
            requires_facts=requires_facts,
            requires_context=requires_context,
            response_strategy=STRATEGIES[query_type],
            language=language,
        )

    @staticmethod
    def _classify_type(q: str) -> str:
        if any(c in q for c in DIAGNOSTIC_CUES):
            return "diagnostic"
        if any(c in q for c in CREATIVE_CUES):
            return "creative"
        if any(c in q for c in STUDY_CUES):
            return "study"
        if any(c in q for c in FACTUAL_CUES):
            return "factual"
        return "general"

    @staticmethod
    def _complexity(text: str) -> int:
        words = len(text.split())
        questions = max(1, text.count("?"))
        conjunctions = len(re.findall(r"\b(and|also|then|compare|versus|vs)\b", text.lower()))
        score = 1
        if words > 15:
            score += 1
        if words > 40:
            score += 1
        if questions > 1 or conjunctions >= 2:
            score += 1
        if words > 100:
            score += 1
        return min(score, 5)
