"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Precision = Literal["low", "medium", "high", "exact"]
SearchStrategy = Literal["semantic_only", "temporal_boost", "exact_match", "multi_stage"]


@dataclass(slots=True)
class ParsedDocument:
    """Extracted document text before chunking."""

    doc_id: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class DocumentChunk:
    """A bounded passage of a source document."""

    chunk_id: str
    document_id: str
    content: str
    token_count: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TemporalEntity:
    """A period reference found in text, e.g. raw "first quarter 2024" -> "Q1 2024"."""

    type: str
    raw: str
    normalized: str
    confidence: float
    position: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "raw": self.raw,
            "normalized": self.normalized,
            "confidence": self.confidence,
            "position": self.position,
        }


@dataclass(slots=True)
class SearchResult:
    """One vector-store hit."""

    chunk_id: str
    document_id: str
    content: str
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class EnhancedRetrievalResult:
    """Deduplicated, similarity-ranked output of the retrieval engine."""

    chunks: list[SearchResult]
    reasoning_applied: bool
    search_strategy_used: str
    total_chunks_considered: int


@dataclass(frozen=True, slots=True)
class QueryContext:
    """Temporal/financial intent of a query and the precision it demands."""

    is_temporal_query: bool
    is_financial_query: bool
    is_specific_data_query: bool
    timeframe: str | None
    financial_metrics: tuple[str, ...]
    required_precision: Precision
    suggested_threshold: float
    search_strategy: SearchStrategy
    require_temporal_match: bool
    reasoning_text: str
    matched_signals: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TemporalValidation:
    """Agreement between a chunk's temporal metadata and the query timeframe."""

    is_valid: bool
    score: float
    reason: str


@dataclass(slots=True)
class ScoredResult:
    """A search result re-scored against the query context."""

    result: SearchResult
    temporal_score: float
    financial_score: float
    final_score: float
    match_reason: str
    validation: TemporalValidation
