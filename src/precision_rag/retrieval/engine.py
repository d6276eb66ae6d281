"""Multi-angle similarity search with merge, dedup and fallback."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass

from langchain_core.embeddings import Embeddings

from precision_rag.config import PerformanceMode, RetrievalConfig
from precision_rag.errors import EmbeddingError, RetrievalError, SearchTimeoutError, VectorSearchError
from precision_rag.query.enhancer import QueryUnderstanding
from precision_rag.retrieval.vector_store import VectorStore
from precision_rag.types import EnhancedRetrievalResult, SearchResult

logger = logging.getLogger(__name__)

FALLBACK_STRATEGY = "fallback"

# Modes only tighten the configured caps; they never raise them.
_MODE_OFFSET: dict[str, int] = {"fast": -1, "balanced": 0, "accurate": 0}


@dataclass(frozen=True, slots=True)
class SearchAngle:
    label: str
    text: str
    k: int


def merge_results(
    result_sets: Iterable[list[SearchResult]],
) -> tuple[list[SearchResult], int]:
    """Deduplicate by chunk id keeping the highest similarity, best first.

    Returns the merged list and the number of hits seen before dedup. Equal
    similarities keep the first-seen record; ordering ties break on chunk id.
    """

    best: dict[str, SearchResult] = {}
    considered = 0
    for results in result_sets:
        considered += len(results)
        for result in results:
            existing = best.get(result.chunk_id)
            if existing is None or result.similarity > existing.similarity:
                best[result.chunk_id] = result
    merged = sorted(best.values(), key=lambda result: (-result.similarity, result.chunk_id))
    return merged, considered


class RetrievalEngine:
    """Runs the original-query search plus concept/alternative searches concurrently.

    Design notes:
    1. The original query search is mandatory. If it fails, the whole
       multi-angle attempt is abandoned for a single plain search.
    2. Concept and alternative searches are optional. A failed or timed-out
       angle contributes nothing and never cancels its siblings.
    3. Thresholding is the store's job; the engine only merges and ranks.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embedder: Embeddings,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.vector_store = vector_store
        self.embedder = embedder
        self.config = config or RetrievalConfig()

    def plan_angles(
        self,
        understanding: QueryUnderstanding,
        original_query: str,
        match_count: int,
        performance_mode: PerformanceMode | None = None,
    ) -> list[SearchAngle]:
        offset = _MODE_OFFSET[performance_mode or self.config.performance_mode]
        max_concepts = max(0, self.config.max_concepts + offset)
        max_alternatives = max(0, self.config.max_alternatives + offset)
        angle_k = self.config.angle_match_count

        angles = [SearchAngle("original", original_query, math.ceil(match_count / 2))]
        strategy = understanding.search_strategy
        if strategy in ("broad", "hybrid"):
            angles.extend(
                SearchAngle("concept", concept, angle_k)
                for concept in understanding.key_concepts[:max_concepts]
            )
        if strategy in ("specific", "hybrid"):
            angles.extend(
                SearchAngle("alternative", phrase, angle_k)
                for phrase in understanding.search_queries[:max_alternatives]
            )
        return angles

    async def intelligent_search(
        self,
        understanding: QueryUnderstanding,
        original_query: str,
        *,
        match_count: int | None = None,
        similarity_threshold: float | None = None,
        performance_mode: PerformanceMode | None = None,
    ) -> EnhancedRetrievalResult:
        match_count = match_count or self.config.match_count
        threshold = (
            similarity_threshold
            if similarity_threshold is not None
            else self.config.similarity_threshold
        )
        angles = self.plan_angles(understanding, original_query, match_count, performance_mode)
        logger.info(
            "Intelligent search: strategy=%s angles=%d threshold=%.2f",
            understanding.search_strategy,
            len(angles),
            threshold,
        )

        try:
            outcomes = await asyncio.gather(
                *(self._search_angle(angle.text, angle.k, threshold) for angle in angles),
                return_exceptions=True,
            )
            primary = outcomes[0]
            if isinstance(primary, BaseException):
                raise primary

            result_sets = [primary]
            for angle, outcome in zip(angles[1:], outcomes[1:], strict=True):
                if isinstance(outcome, BaseException):
                    logger.warning("Dropping %s search %r: %s", angle.label, angle.text, outcome)
                    continue
                result_sets.append(outcome)

            merged, considered = merge_results(result_sets)
        except Exception as exc:
            logger.warning("Intelligent search failed, falling back to plain search: %s", exc)
            return await self._fallback(original_query, match_count, threshold)

        chunks = merged[:match_count]
        logger.info(
            "Intelligent search completed: %d unique chunks from %d considered",
            len(chunks),
            considered,
        )
        return EnhancedRetrievalResult(
            chunks=chunks,
            reasoning_applied=True,
            search_strategy_used=understanding.search_strategy,
            total_chunks_considered=considered,
        )

    async def plain_search(
        self,
        query: str,
        *,
        match_count: int | None = None,
        similarity_threshold: float | None = None,
        strategy: str = "semantic_only",
    ) -> EnhancedRetrievalResult:
        """Single-pass search; retries once at the lower threshold when nothing matches."""

        match_count = match_count or self.config.match_count
        threshold = (
            similarity_threshold
            if similarity_threshold is not None
            else self.config.similarity_threshold
        )
        try:
            chunks = await self._search_angle(query, match_count, threshold)
            if not chunks and threshold > self.config.lower_threshold:
                logger.info(
                    "No chunks at threshold %.2f, retrying at %.2f",
                    threshold,
                    self.config.lower_threshold,
                )
                chunks = await self._search_angle(query, match_count, self.config.lower_threshold)
                strategy = f"{strategy}+lower_threshold"
        except RetrievalError as exc:
            logger.warning("Plain search failed: %s", exc)
            return _empty_result()

        return EnhancedRetrievalResult(
            chunks=chunks,
            reasoning_applied=False,
            search_strategy_used=strategy,
            total_chunks_considered=len(chunks),
        )

    async def _fallback(
        self, query: str, match_count: int, threshold: float
    ) -> EnhancedRetrievalResult:
        try:
            chunks = await self._search_angle(query, match_count, threshold)
        except RetrievalError as exc:
            logger.warning("Fallback search failed, returning no chunks: %s", exc)
            return _empty_result()
        return EnhancedRetrievalResult(
            chunks=chunks,
            reasoning_applied=False,
            search_strategy_used=FALLBACK_STRATEGY,
            total_chunks_considered=len(chunks),
        )

    async def _search_angle(self, text: str, k: int, threshold: float) -> list[SearchResult]:
        timeout = self.config.call_timeout_seconds
        try:
            embedding = await asyncio.wait_for(self.embedder.aembed_query(text), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise SearchTimeoutError(f"embedding exceeded {timeout}s") from exc
        except RetrievalError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"embedding failed: {exc}") from exc

        try:
            return await asyncio.wait_for(
                self.vector_store.search(embedding, k, threshold), timeout=timeout
            )
        except asyncio.TimeoutError as exc:
            raise SearchTimeoutError(f"vector search exceeded {timeout}s") from exc
        except RetrievalError:
            raise
        except Exception as exc:
            raise VectorSearchError(f"vector search failed: {exc}") from exc


def _empty_result() -> EnhancedRetrievalResult:
    return EnhancedRetrievalResult(
        chunks=[],
        reasoning_applied=False,
        search_strategy_used=FALLBACK_STRATEGY,
        total_chunks_considered=0,
    )
