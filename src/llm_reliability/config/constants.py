"""Static pattern tables and fixed user-facing messages."""

from __future__ import annotations

import re

REFUSAL_MESSAGE = (
    "I can't help with that request. Please rephrase your question and I'll do my best to help."
)

APOLOGY_MESSAGE = (
    "I'm sorry, I'm having trouble generating a response right now. "
    "Please try again in a moment."
)

LOW_QUALITY_NOTICE = (
    "Note: parts of this answer could not be fully verified. "
    "Please double-check important details."
)

# (placeholder, pattern). Order matters: card numbers before phone numbers.
PII_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("[REDACTED_EMAIL]", re.compile(r"\b[\w.+-]+@[\w-]+\.[\w.-]+\b")),
    ("[REDACTED_CARD]", re.compile(r"\b(?:\d[ -]?){13,16}\b")),
    ("[REDACTED_SSN]", re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
    ("[REDACTED_PHONE]", re.compile(r"(?<!\w)\+?\d{1,3}?[ .-]?\(?\d{3}\)?[ .-]\d{3}[ .-]\d{4}\b")),
    ("[REDACTED_IP]", re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")),
]

PROFANITY = frozenset(
    {"damn", "shit", "fuck", "fucking", "bitch", "bastard", "asshole", "crap", "dick"}
)

INJECTION_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"ignore\s+(all\s+)?(the\s+)?(previous|prior|above|earlier)\s+(instructions|prompts|rules)", re.I),
    re.compile(r"disregard\s+(all\s+)?(the\s+)?(previous|prior|above|system)\s+(instructions|prompt|rules)", re.I),
    re.compile(r"forget\s+(everything|all)\s+(you\s+were\s+told|above|before)", re.I),
    re.compile(r"you\s+are\s+now\s+(in\s+)?(dan|developer\s+mode|jailbroken)", re.I),
    re.compile(r"(reveal|print|show|repeat)\s+(your|the)\s+(system\s+prompt|hidden\s+instructions)", re.I),
    re.compile(r"pretend\s+(that\s+)?you\s+(have\s+no|are\s+not\s+bound\s+by)\s+(rules|restrictions|guidelines)", re.I),
    re.compile(r"</?\s*(system|assistant)\s*>", re.I),
    re.compile(r"\[\s*(system|inst)\s*\]", re.I),
]

UNSAFE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\bhow\s+(do\s+i|to|can\s+i)\s+(make|build|assemble)\s+(a\s+)?(bomb|explosive|pipe\s*bomb)", re.I),
    re.compile(r"\b(synthesi[sz]e|cook|make)\s+(meth|methamphetamine|sarin|ricin)\b", re.I),
    re.compile(r"\bhow\s+(do\s+i|to|can\s+i)\s+(kill|hurt)\s+(myself|someone)\b", re.I),
]

STOPWORDS = frozenset(
    {
        "a", "an", "the", "is", "are", "was", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "shall", "can", "to", "of", "in", "for",
        "on", "with", "at", "by", "from", "as", "into", "through", "during",
        "before", "after", "above", "below", "between", "out", "off", "over",
        "under", "again", "further", "then", "once", "here", "there", "when",
        "where", "why", "how", "all", "each", "every", "both", "few", "more",
        "most", "other", "some", "such", "only", "own", "same", "so", "than",
        "too", "very", "just", "because", "but", "and", "or", "if", "while",
        "about", "up", "it", "its", "this", "that", "these", "those", "i",
        "me", "my", "we", "our", "you", "your", "he", "him", "his", "she",
        "her", "they", "them", "their", "what", "which", "who", "whom",
        "also", "please", "tell",
    }
)

# Negation cues used for claim polarity.
NEGATIONS = frozenset({"not", "no", "never", "none", "neither", "nor", "cannot", "isn't",
                       "aren't", "wasn't", "weren't", "doesn't", "don't", "didn't", "can't",
                       "won't", "isnt", "arent", "doesnt", "dont", "didnt", "cant", "wont"})

HEDGES = ("might", "maybe", "possibly", "perhaps", "i think", "i believe", "probably",
          "not sure", "it seems")

# flag reason / feedback type -> prevention instruction fed back into prompts
PREVENTIONS: dict[str, list[str]] = {
    "incorrect": ["Only state facts supported by the provided knowledge snippets."],
    "hallucination": [
        "Say clearly when you are not sure instead of guessing.",
        "Do not invent names, numbers, dates or citations.",
    ],
    "outdated": ["Mention that information may have changed since your training data."],
    "incomplete": ["Address every part of the question explicitly."],
    "inappropriate": ["Keep the tone respectful and age-appropriate."],
    "unclear": ["Use short sentences and define technical terms."],
    "correction": ["Double-check facts that users have previously corrected."],
    "negative": ["Keep answers focused on the question asked."],
}
