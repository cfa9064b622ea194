"""Per-message tracing with one span per pipeline state."""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

from llm_reliability.models.domain import PipelineTrace


@dataclass
class Span:
    name: str
    start_ms: float
    end_ms: float = 0.0
    ok: bool = True
    metadata: dict = field(default_factory=dict)

    @property
    def duration_ms(self) -> float:
        return self.end_ms - self.start_ms


class TraceContext:
    def __init__(self, trace_id: str | None = None) -> None:
        self.trace_id = trace_id or str(uuid4())
        self.spans: list[Span] = []
        self.states: list[str] = ["received"]
        self.start_time = time.monotonic()
        self._epoch = time.time()

    @contextmanager
    def span(self, name: str, **metadata):
        s = Span(
            name=name,
            start_ms=(time.monotonic() - self.start_time) * 1000,
            metadata=metadata,
        )
        try:
            yield s
        except BaseException:
            s.ok = False
            raise
        finally:
            s.end_ms = (time.monotonic() - self.start_time) * 1000
            self.spans.append(s)

    def transition(self, state: str) -> None:
        self.states.append(state)

    @property
    def state(self) -> str:
        return self.states[-1]

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000

    def to_trace(self, query_id: str) -> PipelineTrace:
        return PipelineTrace(
            trace_id=self.trace_id,
            query_id=query_id,
            timestamp=datetime.fromtimestamp(self._epoch, tz=timezone.utc),
            latency_ms=self.elapsed_ms,
            final_state=self.state,
            spans=[
                {
                    "name": s.name,
                    "start_ms": s.start_ms,
                    "end_ms": s.end_ms,
                    "duration_ms": s.duration_ms,
                    "ok": s.ok,
                    **s.metadata,
                }
                for s in self.spans
            ],
        )
