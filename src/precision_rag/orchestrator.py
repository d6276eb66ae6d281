"""Query-time pipeline: classify -> gate -> enhance -> retrieve -> validate."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from precision_rag.config import PerformanceMode, PrecisionThresholds, RetrievalConfig
from precision_rag.obs.tracing import RetrievalTraceStore, Timer
from precision_rag.query.classifier import classify_query
from precision_rag.query.enhancer import (
    QueryEnhancer,
    QueryUnderstanding,
    ReasoningOptions,
    should_use_enhanced_rag,
)
from precision_rag.retrieval.engine import RetrievalEngine
from precision_rag.retrieval.temporal import score_search_result
from precision_rag.retrieval.vector_store import VectorStore
from precision_rag.types import EnhancedRetrievalResult, QueryContext, ScoredResult, SearchResult

logger = logging.getLogger(__name__)

# Plain-path over-fetch per classifier strategy, so validation has candidates to drop.
_OVERFETCH: dict[str, int] = {
    "exact_match": 2,
    "multi_stage": 3,
    "temporal_boost": 2,
    "semantic_only": 1,
}


@dataclass(frozen=True, slots=True)
class RetrievalOptions:
    model_id: str = ""
    reasoning: ReasoningOptions = field(default_factory=ReasoningOptions)
    disable_rag: bool = False
    match_count: int | None = None
    similarity_threshold: float | None = None
    performance_mode: PerformanceMode | None = None


@dataclass(slots=True)
class PipelineResult:
    chunks: list[ScoredResult]
    query_context: QueryContext | None
    understanding: QueryUnderstanding | None
    reasoning_applied: bool
    search_strategy_used: str
    total_chunks_considered: int
    chunks_rejected: int = 0
    trace_id: str | None = None

    def as_payload(self) -> dict[str, Any]:
        return {
            "chunks": [
                {
                    "chunk_id": scored.result.chunk_id,
                    "document_id": scored.result.document_id,
                    "content": scored.result.content,
                    "similarity": scored.result.similarity,
                    "final_score": scored.final_score,
                    "temporal_score": scored.temporal_score,
                    "financial_score": scored.financial_score,
                    "match_reason": scored.match_reason,
                }
                for scored in self.chunks
            ],
            "reasoning_applied": self.reasoning_applied,
            "search_strategy_used": self.search_strategy_used,
            "total_chunks_considered": self.total_chunks_considered,
            "chunks_rejected": self.chunks_rejected,
            "required_precision": (
                self.query_context.required_precision if self.query_context else None
            ),
            "timeframe": self.query_context.timeframe if self.query_context else None,
            "trace_id": self.trace_id,
        }


class RetrievalPipeline:
    """High-level orchestrator over classifier, enhancer, engine and validator.

    The enhancer is optional; without one every query takes the single-pass
    path. `retrieve` does not raise for upstream failures: each stage has a
    degraded result instead.
    """

    def __init__(
        self,
        *,
        engine: RetrievalEngine,
        vector_store: VectorStore,
        enhancer: QueryEnhancer | None = None,
        thresholds: PrecisionThresholds | None = None,
        config: RetrievalConfig | None = None,
        trace_store: RetrievalTraceStore | None = None,
    ) -> None:
        self.engine = engine
        self.vector_store = vector_store
        self.enhancer = enhancer
        self.thresholds = thresholds or PrecisionThresholds()
        self.config = config or engine.config
        self.trace_store = trace_store

    async def retrieve(
        self, query: str, options: RetrievalOptions | None = None
    ) -> PipelineResult:
        options = options or RetrievalOptions()
        if options.disable_rag:
            return PipelineResult(
                chunks=[],
                query_context=None,
                understanding=None,
                reasoning_applied=False,
                search_strategy_used="disabled",
                total_chunks_considered=0,
            )

        with Timer() as timer:
            context = classify_query(query, self.thresholds)
            logger.info(
                "Query precision=%s strategy=%s timeframe=%s (%s)",
                context.required_precision,
                context.search_strategy,
                context.timeframe,
                context.reasoning_text,
            )
            match_count = options.match_count or self.config.match_count
            threshold = (
                options.similarity_threshold
                if options.similarity_threshold is not None
                else context.suggested_threshold
            )

            understanding: QueryUnderstanding | None = None
            if self.enhancer is not None and should_use_enhanced_rag(
                options.model_id, options.reasoning, options.disable_rag
            ):
                understanding = await self.enhancer.enhance(query, options.model_id, options.reasoning)
                retrieval = await self.engine.intelligent_search(
                    understanding,
                    query,
                    match_count=match_count,
                    similarity_threshold=threshold,
                    performance_mode=options.performance_mode,
                )
            else:
                retrieval = await self.engine.plain_search(
                    query,
                    match_count=match_count * _OVERFETCH[context.search_strategy],
                    similarity_threshold=threshold,
                    strategy=context.search_strategy,
                )

            ranked, rejected = await self._validate(retrieval, context)
            chunks = ranked[:match_count]

        result = PipelineResult(
            chunks=chunks,
            query_context=context,
            understanding=understanding,
            reasoning_applied=retrieval.reasoning_applied,
            search_strategy_used=retrieval.search_strategy_used,
            total_chunks_considered=retrieval.total_chunks_considered,
            chunks_rejected=rejected,
        )
        if self.trace_store is not None:
            record = self.trace_store.create_record(
                query=query,
                required_precision=context.required_precision,
                query_strategy=context.search_strategy,
                search_strategy_used=result.search_strategy_used,
                reasoning_applied=result.reasoning_applied,
                total_chunks_considered=result.total_chunks_considered,
                chunks_returned=len(chunks),
                chunks_rejected=rejected,
                latency_ms=timer.elapsed_ms,
            )
            result.trace_id = record.trace_id
        return result

    async def _validate(
        self, retrieval: EnhancedRetrievalResult, context: QueryContext
    ) -> tuple[list[ScoredResult], int]:
        """Re-score every hit; at exact precision drop temporally invalid hits."""

        metadata = await self._lookup_metadata(retrieval.chunks)
        scored = [
            score_search_result(hit, context, metadata.get(hit.chunk_id, hit.metadata))
            for hit in retrieval.chunks
        ]
        rejected = 0
        if context.required_precision == "exact":
            kept = [item for item in scored if item.validation.is_valid]
            rejected = len(scored) - len(kept)
            if rejected:
                logger.info("Rejected %d chunks without a %s match", rejected, context.timeframe)
            scored = kept
        scored.sort(key=lambda item: item.final_score, reverse=True)
        return scored, rejected

    async def _lookup_metadata(self, hits: list[SearchResult]) -> dict[str, dict[str, Any]]:
        if not hits:
            return {}
        try:
            return await self.vector_store.get_metadata([hit.chunk_id for hit in hits])
        except Exception as exc:
            logger.warning("Chunk metadata lookup failed, using search metadata: %s", exc)
            return {}
