"""Text preprocessing shared by keyword search and response validation."""

from __future__ import annotations

import re

from llm_reliability.config.constants import STOPWORDS


def tokenize(text: str) -> list[str]:
    """Lowercase, strip punctuation, remove stopwords and single characters."""
    text = text.lower()
    text = re.sub(r"[^\w\s]", " ", text)
    tokens = text.split()
    return [t for t in tokens if t not in STOPWORDS and len(t) > 1]


def content_terms(text: str) -> set[str]:
    """Tokens with a light plural fold, for overlap comparisons."""
    terms = set()
    for t in tokenize(text):
        if len(t) > 3 and t.endswith("s") and not t.endswith("ss"):
            t = t[:-1]
        terms.add(t)
    return terms
