"""Tests for feedback intake, the consumer task and learning-pattern aggregation."""

import asyncio

import pytest

from conftest import RecordingStore
from llm_reliability.cache.response_cache import ResponseCache
from llm_reliability.config.constants import PREVENTIONS
from llm_reliability.models.domain import DeliveredResponse, Feedback, OrchestrationResult
from llm_reliability.pipeline.feedback import FeedbackCollector, LearningPatternBook


class FailingStore(RecordingStore):
    async def save_feedback(self, feedback) -> None:
        raise RuntimeError("disk full")


@pytest.fixture
def book():
    return LearningPatternBook()


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def cache():
    return ResponseCache()


@pytest.fixture
def collector(settings, book, store, cache):
    return FeedbackCollector(settings, book, store=store, cache=cache)


def _deliver(collector, rid: str, provider: str = "groq", query_type: str = "factual", fp: str = "fp"):
    collector.register_response(
        DeliveredResponse(
            response_id=rid, query_type=query_type, provider_used=provider, fingerprint=fp, user_id="u"
        )
    )


def test_unknown_response_not_accepted(collector):
    _, accepted = collector.submit(Feedback(response_id="nope", type="positive"))
    assert not accepted
    assert collector.pending == 0


async def test_accepted_feedback_persisted(collector, store):
    _deliver(collector, "r1")
    feedback_id, accepted = collector.submit(Feedback(response_id="r1", type="positive", rating=5))
    assert accepted
    assert collector.pending == 1
    assert await collector.drain() == 1
    assert [f.id for f in store.feedback] == [feedback_id]


async def test_correction_invalidates_cache(collector, cache):
    cache.put("fp-1", OrchestrationResult("old", "groq", (), False, "fp-1"))
    _deliver(collector, "r1", fp="fp-1")
    collector.submit(Feedback(response_id="r1", type="correction", corrections="new"))
    await collector.drain()
    assert cache.entry("fp-1") is None


async def test_patterns_not_updated_per_event(collector, book):
    _deliver(collector, "r1")
    collector.submit(Feedback(response_id="r1", type="flag", flag_reasons=("incorrect",)))
    await collector.drain()
    assert book.patterns == []


async def test_aggregate_publishes_confident_patterns(collector, book):
    for i in range(10):
        _deliver(collector, f"r{i}")
        collector.submit(Feedback(response_id=f"r{i}", type="flag", flag_reasons=("incorrect",)))
    await collector.drain()
    collector.aggregate()

    types = {p.type for p in book.patterns}
    assert types == {"recurring_incorrect", "provider_underperforming"}
    assert book.preventions_for("factual") == PREVENTIONS["incorrect"]
    assert book.preventions_for("study") == []
    assert book.demoted_providers("factual") == ["groq"]
    recurring = next(p for p in book.patterns if p.type == "recurring_incorrect")
    assert recurring.frequency == 10
    assert recurring.confidence == pytest.approx(10 / 15, abs=1e-4)


async def test_sparse_feedback_stays_unconfident(collector, book):
    _deliver(collector, "r1")
    collector.submit(Feedback(response_id="r1", type="flag", flag_reasons=("incorrect",)))
    await collector.drain()
    patterns = collector.aggregate()
    assert book.patterns == []
    recurring = next(p for p in patterns if p.type == "recurring_incorrect")
    assert recurring.confidence == pytest.approx(1 / 6, abs=1e-4)


async def test_mixed_feedback_does_not_demote(collector, book):
    for i in range(10):
        _deliver(collector, f"r{i}", provider="gemini")
        kind = "negative" if i < 4 else "positive"
        collector.submit(Feedback(response_id=f"r{i}", type=kind))
    await collector.drain()
    patterns = collector.aggregate()
    assert not any(p.type == "provider_underperforming" for p in patterns)
    assert book.demoted_providers("factual") == []


async def test_low_rating_counts_as_negative(collector):
    for i in range(10):
        _deliver(collector, f"r{i}", provider="mistral")
        collector.submit(Feedback(response_id=f"r{i}", type="positive", rating=1))
    await collector.drain()
    patterns = collector.aggregate()
    assert any(p.type == "provider_underperforming" and p.provider == "mistral" for p in patterns)


async def test_implicit_feedback(collector, store):
    _deliver(collector, "r1")
    _, accepted = collector.record_implicit("r1", dwell_seconds=2, follow_up_count=3)
    assert accepted
    _, accepted = collector.record_implicit("r1", dwell_seconds=45, follow_up_count=0)
    assert accepted
    assert collector.record_implicit("r1", dwell_seconds=10, follow_up_count=1) == (None, False)
    await collector.drain()
    assert [(f.type, f.implicit) for f in store.feedback] == [("negative", True), ("positive", True)]


def test_full_queue_rejects(settings, book):
    settings.feedback_queue_size = 1
    collector = FeedbackCollector(settings, book)
    _deliver(collector, "r1")
    assert collector.submit(Feedback(response_id="r1", type="positive"))[1]
    assert not collector.submit(Feedback(response_id="r1", type="positive"))[1]


async def test_store_failure_does_not_break_processing(settings, book):
    collector = FeedbackCollector(settings, book, store=FailingStore())
    _deliver(collector, "r1")
    collector.submit(Feedback(response_id="r1", type="negative"))
    assert await collector.drain() == 1
    assert collector.aggregate()


async def test_background_consumer(collector, store):
    collector.start()
    try:
        _deliver(collector, "r1")
        collector.submit(Feedback(response_id="r1", type="positive"))
        for _ in range(100):
            if store.feedback:
                break
            await asyncio.sleep(0.01)
        assert len(store.feedback) == 1
    finally:
        await collector.stop()
