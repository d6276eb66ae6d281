"""Temporal/financial query classification.

Signals are declared as a table of `(category, name, pattern, confidence,
description)` rows. The classifier counts matches per category and derives
the precision tier, similarity threshold and search strategy from the
counts, so adding a signal family never touches the control flow below.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Literal

from precision_rag.config import PrecisionThresholds
from precision_rag.types import Precision, QueryContext, SearchStrategy

logger = logging.getLogger(__name__)

SignalCategory = Literal["temporal", "financial", "specific_data"]


@dataclass(frozen=True, slots=True)
class SignalPattern:
    category: SignalCategory
    name: str
    pattern: re.Pattern[str]
    confidence: float
    description: str


def _signal(
    category: SignalCategory, name: str, pattern: str, confidence: float, description: str
) -> SignalPattern:
    return SignalPattern(category, name, re.compile(pattern), confidence, description)


SIGNAL_TABLE: tuple[SignalPattern, ...] = (
    # temporal
    _signal(
        "temporal",
        "quarter",
        r"\b(?:q[1-4]|first quarter|second quarter|third quarter|fourth quarter|quarter)\b",
        0.9,
        "quarter reference",
    ),
    _signal(
        "temporal",
        "year",
        r"\b(?:19|20)\d{2}\b|\bfiscal year\b|\bfy\s*'?\d{2,4}\b|\bfy\b",
        0.8,
        "year or fiscal year",
    ),
    _signal(
        "temporal",
        "period",
        r"\b(?:annual|annually|yearly|monthly|quarterly|year-over-year|yoy)\b",
        0.6,
        "reporting period",
    ),
    _signal(
        "temporal",
        "range",
        r"\b(?:between|from|to|during|in|for the period)\s+(?:\d{4}|[a-z]+\s+\d{4})\b",
        0.7,
        "explicit period range",
    ),
    # financial
    _signal(
        "financial",
        "metric",
        r"\b(?:revenue|revenues|profit|profits|income|loss|losses|earnings|sales|growth|"
        r"margin|margins|ebitda|roi|eps|expenses|assets|liabilities|equity)\b",
        0.9,
        "financial metric",
    ),
    _signal(
        "financial",
        "amount",
        r"\$\d+(?:[.,]\d+)*[bmk]?\b|\b\d+(?:[.,]\d+)*\s*(?:billion|million|thousand|percent)\b|\d+(?:\.\d+)?\s*%",
        0.8,
        "currency or percentage amount",
    ),
    _signal(
        "financial",
        "statement",
        r"\b(?:income statement|balance sheet|cash flow|financial statement|quarterly report|"
        r"annual report|10-k|10-q)\b",
        0.9,
        "financial statement",
    ),
    _signal(
        "financial",
        "performance",
        r"\b(?:performance|results|comparison|trend|increase|decrease|decline)\b",
        0.5,
        "performance language",
    ),
    # specific data
    _signal("specific_data", "how_much", r"\bhow (?:much|many)\b", 0.9, "asks for a quantity"),
    _signal("specific_data", "what_was", r"\bwhat (?:was|were)\b", 0.8, "asks for a past figure"),
    _signal("specific_data", "exact", r"\b(?:exact|exactly|specific|specifically|precise)\b", 0.9, "asks for precision"),
    _signal("specific_data", "figure", r"\b(?:figure|figures|number|amount|value|total)\b", 0.7, "asks for a figure"),
)

FINANCIAL_METRICS: tuple[str, ...] = (
    "revenue",
    "profit",
    "income",
    "loss",
    "earnings",
    "sales",
    "growth",
    "margin",
    "ebitda",
    "roi",
    "eps",
    "assets",
    "liabilities",
    "equity",
    "cash flow",
    "expenses",
    "operating income",
    "net income",
)
_METRIC_PATTERNS = tuple(
    (metric, re.compile(r"\b" + r"\s+".join(map(re.escape, metric.split())) + r"\b"))
    for metric in FINANCIAL_METRICS
)

_QUARTER_WORDS = {"first": "Q1", "second": "Q2", "third": "Q3", "fourth": "Q4"}

_TIMEFRAME_RULES: tuple[tuple[re.Pattern[str], Callable[[re.Match[str]], str]], ...] = (
    (
        re.compile(r"\b(q[1-4])\s+(?:of\s+)?(\d{4})\b"),
        lambda m: f"{m.group(1).upper()} {m.group(2)}",
    ),
    (
        re.compile(r"\b(first|second|third|fourth)\s+quarter\s+(?:of\s+)?(\d{4})\b"),
        lambda m: f"{_QUARTER_WORDS[m.group(1)]} {m.group(2)}",
    ),
    (
        re.compile(r"\b(?:fiscal\s+year|fy)\s*'?(\d{4}|\d{2})\b"),
        lambda m: f"FY{'20' + m.group(1) if len(m.group(1)) == 2 else m.group(1)}",
    ),
    (re.compile(r"\b((?:19|20)\d{2})\b"), lambda m: m.group(1)),
)


def count_signals(query: str, table: Iterable[SignalPattern] = SIGNAL_TABLE) -> dict[str, int]:
    """Count pattern matches per category over the lower-cased query."""
    normalized = query.lower()
    counts: dict[str, int] = {"temporal": 0, "financial": 0, "specific_data": 0}
    for signal in table:
        hits = len(signal.pattern.findall(normalized))
        if signal.category == "specific_data":
            hits = min(hits, 1)
        counts[signal.category] = counts.get(signal.category, 0) + hits
    return counts


def extract_timeframe(query: str) -> str | None:
    """Return the first period found, by rule priority (quarter-year first)."""
    normalized = query.lower()
    for pattern, formatter in _TIMEFRAME_RULES:
        match = pattern.search(normalized)
        if match:
            return formatter(match)
    return None


def extract_financial_metrics(query: str) -> tuple[str, ...]:
    normalized = query.lower()
    return tuple(metric for metric, pattern in _METRIC_PATTERNS if pattern.search(normalized))


def decide_precision(temporal: bool, financial: bool, specific: bool) -> Precision:
    if specific and (temporal or financial):
        return "exact"
    if temporal and financial:
        return "high"
    if temporal or financial:
        return "medium"
    return "low"


def decide_strategy(precision: Precision, temporal: bool, financial: bool) -> SearchStrategy:
    if precision == "exact":
        return "exact_match"
    if temporal and financial:
        return "multi_stage"
    if temporal:
        return "temporal_boost"
    return "semantic_only"


def classify_query(
    query: str,
    thresholds: PrecisionThresholds | None = None,
    table: Iterable[SignalPattern] = SIGNAL_TABLE,
) -> QueryContext:
    """Analyze a query into a `QueryContext`. Never raises.

    Example:
        "What was Apple's Q1 2024 revenue?" -> precision "exact",
        timeframe "Q1 2024", strategy "exact_match".
    """

    thresholds = thresholds or PrecisionThresholds()
    table = tuple(table)
    text = query if isinstance(query, str) else ""
    normalized = text.lower()

    counts = count_signals(text, table)
    matched = tuple(signal.name for signal in table if signal.pattern.search(normalized))

    is_temporal = counts["temporal"] > 0
    is_financial = counts["financial"] > 0
    has_specific = counts["specific_data"] > 0
    is_specific = has_specific or counts["financial"] > 1

    precision = decide_precision(is_temporal, is_financial, has_specific)
    strategy = decide_strategy(precision, is_temporal, is_financial)

    context = QueryContext(
        is_temporal_query=is_temporal,
        is_financial_query=is_financial,
        is_specific_data_query=is_specific,
        timeframe=extract_timeframe(text),
        financial_metrics=extract_financial_metrics(text),
        required_precision=precision,
        suggested_threshold=thresholds.for_precision(precision),
        search_strategy=strategy,
        require_temporal_match=precision == "exact" and is_temporal,
        reasoning_text=_reasoning(counts, is_specific, precision),
        matched_signals=matched,
    )
    logger.debug("Classified %r: %s", text, context.reasoning_text)
    return context


def _reasoning(counts: dict[str, int], is_specific: bool, precision: Precision) -> str:
    reasons: list[str] = []
    if counts["temporal"]:
        reasons.append(f"Contains {counts['temporal']} temporal reference(s)")
    if counts["financial"]:
        reasons.append(f"Contains {counts['financial']} financial term(s)")
    if is_specific:
        reasons.append("Requests specific data points")
    if precision == "exact":
        reasons.append("Requires exact match for temporal/financial data")
    elif precision == "high":
        reasons.append("Requires high precision for temporal-financial queries")
    return "; ".join(reasons) or "General conversational query"
