"""Stage 4: feedback intake and scheduled learning-pattern aggregation.

Feedback is appended to an asyncio.Queue and returns immediately. A consumer
task persists each event, invalidates the cache entry behind a correction, and
adds it to the aggregation buffer. Patterns are recomputed from the buffer on
a fixed interval, never per event.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections import Counter, OrderedDict, defaultdict, deque
from collections.abc import Callable

from llm_reliability.cache.response_cache import ResponseCache
from llm_reliability.config.constants import PREVENTIONS
from llm_reliability.config.settings import Settings
from llm_reliability.models.domain import DeliveredResponse, Feedback, LearningPattern
from llm_reliability.observability.logger import get_logger
from llm_reliability.protocols.store import ResultStore

logger = get_logger("feedback")

NEGATIVE_TYPES = ("negative", "correction", "flag")


class LearningPatternBook:
    """The most recent confident patterns, read on the request path."""

    def __init__(self) -> None:
        self._patterns: list[LearningPattern] = []
        self._lock = threading.Lock()

    def replace(self, patterns: list[LearningPattern]) -> None:
        with self._lock:
            self._patterns = list(patterns)

    @property
    def patterns(self) -> list[LearningPattern]:
        with self._lock:
            return list(self._patterns)

    def preventions_for(self, query_type: str) -> list[str]:
        seen: dict[str, None] = {}
        for p in self.patterns:
            if p.query_type == query_type:
                for prevention in p.suggested_preventions:
                    seen.setdefault(prevention, None)
        return list(seen)

    def demoted_providers(self, query_type: str) -> list[str]:
        return [
            p.provider
            for p in self.patterns
            if p.query_type == query_type and p.type == "provider_underperforming" and p.provider
        ]


class FeedbackCollector:
    def __init__(
        self,
        settings: Settings,
        book: LearningPatternBook,
        store: ResultStore | None = None,
        cache: ResponseCache | None = None,
        monitor=None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._book = book
        self._store = store
        self._cache = cache
        self._monitor = monitor
        self._clock = clock
        self._queue: asyncio.Queue[Feedback] = asyncio.Queue(maxsize=settings.feedback_queue_size)
        self._delivered: OrderedDict[str, DeliveredResponse] = OrderedDict()
        self._delivered_lock = threading.Lock()
        self._buffer: deque[tuple[Feedback, DeliveredResponse]] = deque(
            maxlen=settings.feedback_queue_size
        )
        self._consumer: asyncio.Task | None = None
        self._aggregator: asyncio.Task | None = None

    # -- response registry --------------------------------------------------

    def register_response(self, delivered: DeliveredResponse) -> None:
        with self._delivered_lock:
            self._delivered[delivered.response_id] = delivered
            self._delivered.move_to_end(delivered.response_id)
            while len(self._delivered) > self._settings.feedback_queue_size:
                self._delivered.popitem(last=False)

    def delivered(self, response_id: str) -> DeliveredResponse | None:
        with self._delivered_lock:
            return self._delivered.get(response_id)

    # -- intake -------------------------------------------------------------

    def submit(self, feedback: Feedback) -> tuple[str, bool]:
        """Enqueue without waiting. Unknown responses and a full queue are not accepted."""
        if self.delivered(feedback.response_id) is None:
            logger.info("feedback_unknown_response", response_id=feedback.response_id)
            return feedback.id, False
        try:
            self._queue.put_nowait(feedback)
        except asyncio.QueueFull:
            logger.warning("feedback_queue_full", response_id=feedback.response_id)
            return feedback.id, False
        logger.info(
            "feedback_enqueued",
            feedback_id=feedback.id,
            response_id=feedback.response_id,
            type=feedback.type,
            implicit=feedback.implicit,
        )
        return feedback.id, True

    def record_implicit(
        self, response_id: str, dwell_seconds: float, follow_up_count: int
    ) -> tuple[str | None, bool]:
        """Infer feedback from reading time and follow-up questions.

        Quick abandonment followed by re-asking counts as negative; a long read
        with at most one follow-up counts as positive. Anything else is ignored.
        """
        if dwell_seconds < 5 and follow_up_count >= 2:
            kind = "negative"
        elif dwell_seconds >= 20 and follow_up_count <= 1:
            kind = "positive"
        else:
            return None, False
        return self.submit(Feedback(response_id=response_id, type=kind, implicit=True))

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # -- consumer -----------------------------------------------------------

    async def drain(self) -> int:
        """Process everything currently queued. Returns the number handled."""
        handled = 0
        while True:
            try:
                feedback = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return handled
            try:
                await self._handle(feedback)
            finally:
                self._queue.task_done()
            handled += 1

    async def _consume(self) -> None:
        while True:
            feedback = await self._queue.get()
            try:
                await self._handle(feedback)
            except Exception as e:
                logger.error("feedback_processing_failed", feedback_id=feedback.id, error=str(e))
            finally:
                self._queue.task_done()

    async def _handle(self, feedback: Feedback) -> None:
        start = self._clock()
        ok = True
        delivered = self.delivered(feedback.response_id)
        if self._store is not None:
            try:
                await self._store.save_feedback(feedback)
            except Exception as e:
                ok = False
                logger.warning("feedback_persist_failed", feedback_id=feedback.id, error=str(e))

        if delivered is not None:
            if feedback.type == "correction" and self._cache is not None:
                self._cache.invalidate(delivered.fingerprint)
                logger.info(
                    "cache_invalidated_by_correction",
                    response_id=feedback.response_id,
                    fingerprint=delivered.fingerprint[:12],
                )
            self._buffer.append((feedback, delivered))

        if self._monitor is not None:
            try:
                self._monitor.record_feedback(feedback.type)
                self._monitor.record_stage(
                    "feedback_collection", ok, (self._clock() - start) * 1000
                )
            except Exception as e:
                logger.warning("monitor_event_failed", event="feedback", error=str(e))

    # -- aggregation --------------------------------------------------------

    def aggregate(self) -> list[LearningPattern]:
        """Recompute patterns from the buffer and publish the confident ones."""
        s = self._settings
        prior = s.learning_prior_weight
        totals: Counter[str] = Counter()
        reasons: dict[str, Counter[str]] = defaultdict(Counter)
        per_provider: dict[tuple[str, str], list[int]] = defaultdict(lambda: [0, 0])

        for feedback, delivered in list(self._buffer):
            qtype = delivered.query_type
            totals[qtype] += 1
            negative = feedback.type in NEGATIVE_TYPES or (
                feedback.rating is not None and feedback.rating <= 2
            )
            counts = per_provider[(qtype, delivered.provider_used)]
            counts[1] += 1
            if not negative:
                continue
            counts[0] += 1
            if feedback.type == "flag" and feedback.flag_reasons:
                for reason in feedback.flag_reasons:
                    reasons[qtype][reason] += 1
            elif feedback.type == "correction":
                reasons[qtype]["correction"] += 1
            else:
                reasons[qtype]["negative"] += 1

        patterns: list[LearningPattern] = []
        for qtype, counter in reasons.items():
            for reason, frequency in counter.most_common():
                patterns.append(
                    LearningPattern(
                        type=f"recurring_{reason}",
                        query_type=qtype,
                        frequency=frequency,
                        confidence=round(frequency / (totals[qtype] + prior), 4),
                        suggested_preventions=list(PREVENTIONS.get(reason, [])),
                    )
                )

        for (qtype, provider), (negative, total) in per_provider.items():
            if not provider or total == 0 or negative / total < s.provider_demotion_ratio:
                continue
            patterns.append(
                LearningPattern(
                    type="provider_underperforming",
                    query_type=qtype,
                    frequency=negative,
                    confidence=round(negative / (total + prior), 4),
                    suggested_preventions=[],
                    provider=provider,
                )
            )

        confident = [p for p in patterns if p.confidence >= s.learning_min_confidence]
        self._book.replace(confident)
        logger.info(
            "learning_patterns_aggregated",
            buffered=len(self._buffer),
            patterns=len(patterns),
            confident=len(confident),
        )
        return patterns

    async def _run_aggregation(self) -> None:
        while True:
            await asyncio.sleep(self._settings.learning_interval_s)
            try:
                self.aggregate()
            except Exception as e:
                logger.error("learning_aggregation_failed", error=str(e))

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        if self._consumer is None:
            self._consumer = asyncio.create_task(self._consume())
        if self._aggregator is None:
            self._aggregator = asyncio.create_task(self._run_aggregation())

    async def stop(self) -> None:
        for task in (self._consumer, self._aggregator):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._consumer = None
        self._aggregator = None
