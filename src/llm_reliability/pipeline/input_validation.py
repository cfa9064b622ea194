"""Stage 1: sanitize, screen and classify the incoming message."""

from __future__ import annotations

import re
import unicodedata

from llm_reliability.config.constants import (
    INJECTION_PATTERNS,
    PII_PATTERNS,
    PROFANITY,
    UNSAFE_PATTERNS,
)
from llm_reliability.exceptions import InputRejectedError
from llm_reliability.models.domain import Query, SanitizedInput
from llm_reliability.observability.logger import get_logger
from llm_reliability.pipeline.classifier import QueryClassifier

logger = get_logger("input_validation")

_WORD = re.compile(r"\b\w+\b")


class InputValidator:
    def __init__(self, classifier: QueryClassifier, max_chars: int = 8000) -> None:
        self._classifier = classifier
        self._max_chars = max_chars

    def sanitize(self, raw_text: str) -> SanitizedInput:
        text = unicodedata.normalize("NFKC", raw_text)
        text = re.sub(r"\s+", " ", text).strip()
        flags: list[str] = []

        if not text:
            return SanitizedInput(text="", flags=["empty"], unsafe=True, reason="empty_input")
        if len(text) > self._max_chars:
            return SanitizedInput(text="", flags=["too_long"], unsafe=True, reason="input_too_long")

        for pattern in INJECTION_PATTERNS:
            if pattern.search(text):
                flags.append("prompt_injection")
                return SanitizedInput(text="", flags=flags, unsafe=True, reason="prompt_injection")

        for pattern in UNSAFE_PATTERNS:
            if pattern.search(text):
                flags.append("unsafe_content")
                return SanitizedInput(text="", flags=flags, unsafe=True, reason="unsafe_content")

        for placeholder, pattern in PII_PATTERNS:
            text, count = pattern.subn(placeholder, text)
            if count:
                flags.append(f"pii:{placeholder.strip('[]').lower()}")

        def mask(match: re.Match[str]) -> str:
            word = match.group(0)
            if word.lower() in PROFANITY:
                return word[0] + "*" * (len(word) - 1)
            return word

        masked = _WORD.sub(mask, text)
        if masked != text:
            flags.append("profanity")
            text = masked

        return SanitizedInput(text=text, flags=flags, unsafe=False)

    def validate(self, query: Query) -> tuple[Query, list[str]]:
        """Return the classified query and its sanitization flags.

        Raises InputRejectedError for unsafe or invalid input.
        """
        sanitized = self.sanitize(query.raw_text)
        if sanitized.unsafe:
            logger.warning(
                "input_rejected",
                query_id=query.id,
                reason=sanitized.reason,
                flags=sanitized.flags,
            )
            raise InputRejectedError(sanitized.reason or "unsafe_input", sanitized.flags)

        classification = self._classifier.classify(sanitized.text)
        if sanitized.flags:
            logger.info("input_sanitized", query_id=query.id, flags=sanitized.flags)
        return query.with_classification(classification, sanitized.text), sanitized.flags
