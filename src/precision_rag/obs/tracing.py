"""Per-query retrieval traces and latency timing."""

from __future__ import annotations

import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(slots=True)
class RetrievalTrace:
    trace_id: str
    timestamp_utc: str
    query: str
    required_precision: str
    query_strategy: str
    search_strategy_used: str
    reasoning_applied: bool
    total_chunks_considered: int
    chunks_returned: int
    chunks_rejected: int
    latency_ms: float


class RetrievalTraceStore:
    """In-memory, size-bounded trace storage for API-level observability."""

    def __init__(self, max_records: int = 1000) -> None:
        self.max_records = max_records
        self._records: OrderedDict[str, RetrievalTrace] = OrderedDict()

    def create_record(
        self,
        *,
        query: str,
        required_precision: str,
        query_strategy: str,
        search_strategy_used: str,
        reasoning_applied: bool,
        total_chunks_considered: int,
        chunks_returned: int,
        chunks_rejected: int,
        latency_ms: float,
    ) -> RetrievalTrace:
        record = RetrievalTrace(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            query=query,
            required_precision=required_precision,
            query_strategy=query_strategy,
            search_strategy_used=search_strategy_used,
            reasoning_applied=reasoning_applied,
            total_chunks_considered=total_chunks_considered,
            chunks_returned=chunks_returned,
            chunks_rejected=chunks_rejected,
            latency_ms=latency_ms,
        )
        self._records[record.trace_id] = record
        while len(self._records) > self.max_records:
            self._records.popitem(last=False)
        return record

    def get(self, trace_id: str) -> RetrievalTrace:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[RetrievalTrace]:
        if limit <= 0:
            return []
        return list(self._records.values())[-limit:]

    def __len__(self) -> int:
        return len(self._records)

    def summary(self) -> dict[str, float | int]:
        """Aggregate retrieval metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "reasoning_rate": 0.0,
                "fallback_count": 0,
                "avg_chunks_returned": 0.0,
                "total_chunks_rejected": 0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "reasoning_rate": sum(record.reasoning_applied for record in records) / total,
            "fallback_count": sum(
                record.search_strategy_used == "fallback" for record in records
            ),
            "avg_chunks_returned": sum(record.chunks_returned for record in records) / total,
            "total_chunks_rejected": sum(record.chunks_rejected for record in records),
        }


class Timer:
    """Simple context timer used by the pipelines."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
