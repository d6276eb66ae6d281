"""Temporal agreement checks and precision re-scoring of search hits."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from precision_rag.types import QueryContext, ScoredResult, SearchResult, TemporalEntity, TemporalValidation

_QUARTER_TIMEFRAME = re.compile(r"^Q[1-4]\s+(\d{4})$")


def _normalized_entities(metadata: Mapping[str, Any]) -> list[str]:
    values: list[str] = []
    for entity in metadata.get("temporal_entities") or []:
        if isinstance(entity, TemporalEntity):
            values.append(entity.normalized)
        elif isinstance(entity, Mapping) and entity.get("normalized"):
            values.append(str(entity["normalized"]))
    return values


def validate_temporal_match(
    metadata: Mapping[str, Any], context: QueryContext
) -> TemporalValidation:
    """Score how well a chunk's temporal entities agree with the query timeframe.

    1.0 exact period match (or no timeframe to check), 0.7 same year for a
    quarter query, 0.0 and invalid when exact precision is required,
    0.3 otherwise. Pure function; the caller decides what to drop.
    """

    timeframe = context.timeframe
    if not context.is_temporal_query or not timeframe:
        return TemporalValidation(True, 1.0, "No temporal validation required")

    entities = _normalized_entities(metadata)
    if timeframe in entities:
        return TemporalValidation(True, 1.0, f"Exact match for {timeframe}")

    quarter = _QUARTER_TIMEFRAME.match(timeframe)
    if quarter:
        year = quarter.group(1)
        if any(year in entity for entity in entities):
            return TemporalValidation(True, 0.7, f"Year match for {year}")

    if context.required_precision == "exact":
        return TemporalValidation(False, 0.0, f"No temporal match for required {timeframe}")
    return TemporalValidation(True, 0.3, "No temporal match but allowing for context")


def score_search_result(
    result: SearchResult,
    context: QueryContext,
    metadata: Mapping[str, Any] | None = None,
) -> ScoredResult:
    """Boost similarity by temporal and financial agreement, capped at 1.0."""

    metadata = result.metadata if metadata is None else metadata
    final_score = result.similarity
    reasons = [f"similarity: {result.similarity:.3f}"]

    validation = validate_temporal_match(metadata, context)
    temporal_score = 0.0
    if context.is_temporal_query and context.timeframe:
        temporal_score = validation.score
        if validation.score > 0.8:
            final_score += 0.2
            reasons.append("exact temporal match")
        elif validation.score > 0.5:
            final_score += 0.1
            reasons.append("partial temporal match")

    financial_score = 0.0
    if context.is_financial_query:
        has_financial = bool(metadata.get("has_financial_data"))
        entities = metadata.get("financial_entities") or []
        if has_financial and entities:
            financial_score = 0.8
            final_score += 0.15
            reasons.append("contains financial data")
        elif has_financial:
            financial_score = 0.5
            final_score += 0.05
            reasons.append("financial context")

        content = result.content.lower()
        matching = [metric for metric in context.financial_metrics if metric.lower() in content]
        if matching:
            final_score += 0.05 * len(matching)
            reasons.append(f"matches: {', '.join(matching)}")

    return ScoredResult(
        result=result,
        temporal_score=temporal_score,
        financial_score=financial_score,
        final_score=min(final_score, 1.0),
        match_reason=", ".join(reasons),
        validation=validation,
    )
