"""Per-turn tracing and cost accounting."""

from __future__ import annotations

import re
import threading
import time
import uuid
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from chat_agent.types import ToolCallRecord, TurnState

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


@dataclass(slots=True)
class TraceRecord:
    """Everything observed about one agent turn."""

    trace_id: str
    timestamp_utc: str
    session_id: str | None
    question: str
    answer: str
    state: str
    rounds: int
    tool_calls: list[ToolCallRecord]
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float
    latency_ms: float

    @property
    def answered(self) -> bool:
        return self.state == TurnState.ANSWERED.value

    @property
    def failed_calls(self) -> list[ToolCallRecord]:
        return [call for call in self.tool_calls if not call.success]


@dataclass(slots=True)
class CostModel:
    """Token pricing in USD per 1K tokens; defaults match gpt-4o-mini list prices."""

    input_per_1k: float = 0.00015
    output_per_1k: float = 0.0006

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return input_tokens * self.input_per_1k / 1000.0 + output_tokens * self.output_per_1k / 1000.0


@dataclass(slots=True)
class _Totals:
    latencies: list[float] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    rounds: int = 0
    states: Counter[str] = field(default_factory=Counter)
    calls_by_tool: Counter[str] = field(default_factory=Counter)
    failed_calls: int = 0
    policy_violations: int = 0

    def add(self, record: TraceRecord) -> None:
        self.latencies.append(record.latency_ms)
        self.input_tokens += record.input_tokens
        self.output_tokens += record.output_tokens
        self.cost_usd += record.estimated_cost_usd
        self.rounds += record.rounds
        self.states[record.state] += 1
        for call in record.tool_calls:
            self.calls_by_tool[call.tool_name] += 1
        failures = record.failed_calls
        self.failed_calls += len(failures)
        self.policy_violations += sum(
            1 for call in failures if (call.error or "").startswith("policy violation")
        )


class TraceStore:
    """Bounded, thread-safe, in-memory trace log; oldest records are evicted first."""

    def __init__(self, *, cost_model: CostModel | None = None, max_records: int = 1000) -> None:
        self._records: OrderedDict[str, TraceRecord] = OrderedDict()
        self._cost_model = cost_model or CostModel()
        self._max_records = max_records
        self._lock = threading.Lock()

    def create_record(
        self,
        *,
        session_id: str | None,
        question: str,
        answer: str,
        state: str,
        rounds: int,
        tool_calls: list[ToolCallRecord],
        input_tokens: int,
        output_tokens: int,
        latency_ms: float,
    ) -> TraceRecord:
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            session_id=session_id,
            question=question,
            answer=answer,
            state=state,
            rounds=rounds,
            tool_calls=tool_calls,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost_usd=self._cost_model.estimate_cost(input_tokens, output_tokens),
            latency_ms=latency_ms,
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self._max_records:
                self._records.popitem(last=False)
        return record

    def get(self, trace_id: str) -> TraceRecord:
        with self._lock:
            record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        with self._lock:
            return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, Any]:
        """Aggregate turn, tool and cost metrics over every retained trace."""
        totals = _Totals()
        with self._lock:
            for record in self._records.values():
                totals.add(record)

        count = len(totals.latencies)
        return {
            "total_requests": count,
            "avg_latency_ms": sum(totals.latencies) / count if count else 0.0,
            "p95_latency_ms": _percentile(totals.latencies, 0.95),
            "avg_rounds": totals.rounds / count if count else 0.0,
            "total_input_tokens": totals.input_tokens,
            "total_output_tokens": totals.output_tokens,
            "total_estimated_cost_usd": totals.cost_usd,
            "total_tool_calls": sum(totals.calls_by_tool.values()),
            "tool_calls_by_name": dict(totals.calls_by_tool),
            "failed_tool_calls": totals.failed_calls,
            "policy_violations": totals.policy_violations,
            "turns_by_state": dict(totals.states),
            "unanswered_turns": count - totals.states[TurnState.ANSWERED.value],
        }


class Timer:
    """Context manager measuring wall-clock milliseconds."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    """Rough token count: words plus punctuation marks."""
    return len(_TOKEN_PATTERN.findall(text))


def _percentile(values: list[float], fraction: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    return ordered[max(0, int(len(ordered) * fraction) - 1)]
