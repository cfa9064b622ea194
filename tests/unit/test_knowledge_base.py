"""Tests for the tokenizer and the BM25 knowledge base."""

import json

import pytest

from llm_reliability.knowledge.bm25_knowledge_base import BM25KnowledgeBase
from llm_reliability.knowledge.tokenizer import content_terms, tokenize

SNIPPETS = [
    {"id": "paris", "text": "Paris is the capital and largest city of France.", "subject": "geography",
     "reliability": 0.95},
    {"id": "berlin", "text": "Berlin is the capital of Germany.", "subject": "geography"},
    {"id": "photo", "text": "Photosynthesis converts light energy into chemical energy.",
     "subject": "biology", "reliability": 0.6},
    {"id": "water", "text": "Water boils at 100 degrees Celsius at sea level.", "subject": "physics"},
]


def test_tokenize_basic():
    tokens = tokenize("The quick brown fox jumps over the lazy dog")
    assert "quick" in tokens
    assert "fox" in tokens
    assert "the" not in tokens
    assert "over" not in tokens


def test_tokenize_punctuation_and_case():
    assert tokenize("Hello, World! How are you?") == ["hello", "world"]


def test_tokenize_empty():
    assert tokenize("") == []
    assert tokenize("the a an is are") == []


def test_content_terms_fold_plurals():
    assert content_terms("Mondays and meters") == {"monday", "meter"}
    assert "glass" in content_terms("glass")


async def test_search_ranks_best_match_first():
    kb = BM25KnowledgeBase(SNIPPETS)
    results = await kb.search_knowledge("capital of France")
    assert results[0].snippet_id == "paris"
    assert results[0].relevance == 1.0
    assert results[0].reliability == 0.95
    assert all(r.relevance <= 1.0 for r in results)


async def test_min_reliability_filter():
    kb = BM25KnowledgeBase(SNIPPETS)
    assert await kb.search_knowledge("photosynthesis energy", {"min_reliability": 0.7}) == []
    results = await kb.search_knowledge("photosynthesis energy")
    assert [r.snippet_id for r in results] == ["photo"]


async def test_subject_filter():
    kb = BM25KnowledgeBase(SNIPPETS)
    assert await kb.search_knowledge("Germany", {"subject": "biology"}) == []
    results = await kb.search_knowledge("Germany", {"subject": "geography"})
    assert [r.snippet_id for r in results] == ["berlin"]


async def test_top_k_filter():
    kb = BM25KnowledgeBase(SNIPPETS)
    results = await kb.search_knowledge("France Germany water", {"top_k": 1})
    assert len(results) == 1


async def test_no_match_or_empty_base():
    assert await BM25KnowledgeBase().search_knowledge("anything") == []
    kb = BM25KnowledgeBase(SNIPPETS)
    assert await kb.search_knowledge("the of and") == []
    assert await kb.search_knowledge("quantum chromodynamics") == []


async def test_add_snippets():
    kb = BM25KnowledgeBase(SNIPPETS)
    await kb.add([{"id": "rome", "text": "Rome is the capital of Italy."}])
    assert kb.size == 5
    results = await kb.search_knowledge("Italy")
    assert [r.snippet_id for r in results] == ["rome"]
    assert results[0].source == "knowledge_base"


def test_from_file(tmp_path):
    path = tmp_path / "knowledge.json"
    path.write_text(json.dumps({"snippets": SNIPPETS}), encoding="utf-8")
    assert BM25KnowledgeBase.from_file(str(path)).size == 4


def test_from_missing_file(tmp_path):
    assert BM25KnowledgeBase.from_file(str(tmp_path / "missing.json")).size == 0


def test_snippet_without_text_rejected():
    with pytest.raises(KeyError):
        BM25KnowledgeBase([{"id": "x"}])
