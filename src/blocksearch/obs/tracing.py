"""Search tracing and latency accounting."""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from blocksearch.types import ToolTrace


@dataclass(slots=True)
class SearchTraceRecord:
    trace_id: str
    timestamp_utc: str
    query: str
    result_count: int
    total_ranked: int
    latency_ms: float
    session_id: str | None = None
    timed_out: bool = False
    neural_fallback: bool = False
    error: str | None = None
    stage_ms: dict[str, float] = field(default_factory=dict)


class TraceStore:
    """In-memory trace storage for API-level observability."""

    def __init__(self, *, max_records: int = 1000) -> None:
        self.max_records = max_records
        self._records: dict[str, SearchTraceRecord] = {}
        self._tool_traces: list[ToolTrace] = []
        self._lock = threading.Lock()

    def create_record(
        self,
        *,
        query: str,
        result_count: int,
        total_ranked: int,
        latency_ms: float,
        session_id: str | None = None,
        timed_out: bool = False,
        neural_fallback: bool = False,
        error: str | None = None,
        stage_ms: dict[str, float] | None = None,
    ) -> SearchTraceRecord:
        record = SearchTraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            query=query,
            result_count=result_count,
            total_ranked=total_ranked,
            latency_ms=latency_ms,
            session_id=session_id,
            timed_out=timed_out,
            neural_fallback=neural_fallback,
            error=error,
            stage_ms=dict(stage_ms or {}),
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self.max_records:
                del self._records[next(iter(self._records))]
        return record

    def record_tool(self, trace: ToolTrace) -> None:
        with self._lock:
            self._tool_traces.append(trace)
            del self._tool_traces[: -self.max_records]

    def get(self, trace_id: str) -> SearchTraceRecord:
        with self._lock:
            record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[SearchTraceRecord]:
        with self._lock:
            return list(self._records.values())[-limit:]

    def tool_traces(self) -> list[ToolTrace]:
        with self._lock:
            return list(self._tool_traces)

    def summary(self) -> dict[str, float | int]:
        """Aggregate core observability metrics for dashboard display."""
        with self._lock:
            records = list(self._records.values())
            tool_calls = len(self._tool_traces)
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "avg_results": 0.0,
                "timeouts": 0,
                "neural_fallbacks": 0,
                "errors": 0,
                "tool_calls": tool_calls,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "avg_results": sum(record.result_count for record in records) / total,
            "timeouts": sum(1 for record in records if record.timed_out),
            "neural_fallbacks": sum(1 for record in records if record.neural_fallback),
            "errors": sum(1 for record in records if record.error is not None),
            "tool_calls": tool_calls,
        }


class Timer:
    """Simple context timer used around pipeline stages."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
