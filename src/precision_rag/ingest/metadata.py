"""Temporal, financial and hyperlink metadata extracted from chunk text."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urlparse

from precision_rag.types import TemporalEntity

_QUARTER_WORDS = {"first": "Q1", "second": "Q2", "third": "Q3", "fourth": "Q4"}


def _normalize_quarter(match: re.Match[str]) -> str:
    quarter = match.group(1)
    label = _QUARTER_WORDS.get(quarter.split()[0].lower(), quarter.upper())
    return f"{label} {match.group(2)}"


def _normalize_fiscal_year(match: re.Match[str]) -> str:
    year = match.group(1)
    return f"FY{'20' + year if len(year) == 2 else year}"


@dataclass(frozen=True, slots=True)
class _TemporalPattern:
    type: str
    regex: re.Pattern[str]
    normalizer: Callable[[re.Match[str]], str]
    confidence: float


_TEMPORAL_PATTERNS: tuple[_TemporalPattern, ...] = (
    _TemporalPattern(
        "quarter",
        re.compile(r"\b(Q[1-4]|(?:first|second|third|fourth)\s+quarter)\s+(?:of\s+)?(\d{4})\b", re.I),
        _normalize_quarter,
        0.9,
    ),
    _TemporalPattern(
        "fiscal_year",
        re.compile(r"\b(?:fiscal\s+year|FY)\s*'?(\d{4}|\d{2})\b", re.I),
        _normalize_fiscal_year,
        0.8,
    ),
    _TemporalPattern(
        "year",
        re.compile(r"\b(?:19|20)\d{2}\b"),
        lambda m: m.group(0),
        0.6,
    ),
    _TemporalPattern(
        "month",
        re.compile(
            r"\b(January|February|March|April|May|June|July|August|September|"
            r"October|November|December)\s+(\d{4})\b"
        ),
        lambda m: f"{m.group(1)} {m.group(2)}",
        0.7,
    ),
    _TemporalPattern(
        "date_range",
        re.compile(r"\b(\d{1,2}/\d{1,2}/\d{2,4})\s*[-–—]\s*(\d{1,2}/\d{1,2}/\d{2,4})\b"),
        lambda m: f"{m.group(1)} - {m.group(2)}",
        0.8,
    ),
    _TemporalPattern(
        "specific_date",
        re.compile(r"\b\d{1,2}/\d{1,2}/\d{2,4}\b"),
        lambda m: m.group(0),
        0.85,
    ),
)

_RECENT_YEAR = re.compile(r"20([2-9]\d)")

_CURRENCY = re.compile(r"\$(\d{1,3}(?:,\d{3})*(?:\.\d+)?|\d+(?:\.\d+)?)\s*([BMK]|billion|million|thousand)?\b", re.I)
_PERCENT = re.compile(r"([+-]?\d{1,3}(?:\.\d+)?)\s*%")
_MULTIPLIERS = {
    "b": 1e9,
    "billion": 1e9,
    "m": 1e6,
    "million": 1e6,
    "k": 1e3,
    "thousand": 1e3,
}

_MARKDOWN_LINK = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")
_STANDARD_URL = re.compile(
    r"https?://(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b[-a-zA-Z0-9()@:%_+.~#?&/=]*"
)
_NAKED_DOMAIN = re.compile(
    r"(?:^|\s)www\.([-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b[-a-zA-Z0-9()@:%_+.~#?&/=]*)"
)

_URL_CATEGORIES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("payment", ("polar.sh", "stripe.com", "gumroad.com", "checkout", "payment", "buy")),
    ("product", ("product", "pricing", "shop")),
    ("documentation", ("docs", "documentation", "guide", "wiki", "readme")),
    (
        "social",
        ("twitter.com", "x.com", "linkedin.com", "facebook.com", "instagram.com", "github.com"),
    ),
)


def extract_temporal_entities(content: str) -> list[TemporalEntity]:
    """Find period references, most specific (highest confidence) first."""
    entities: list[TemporalEntity] = []
    for pattern in _TEMPORAL_PATTERNS:
        for match in pattern.regex.finditer(content):
            confidence = pattern.confidence
            if _RECENT_YEAR.search(match.group(0)):
                confidence = min(confidence + 0.1, 1.0)
            entities.append(
                TemporalEntity(
                    type=pattern.type,
                    raw=match.group(0),
                    normalized=pattern.normalizer(match),
                    confidence=round(confidence, 2),
                    position=match.start(),
                )
            )
    return sorted(entities, key=lambda e: (-e.confidence, e.position))


def extract_financial_entities(content: str) -> list[dict[str, Any]]:
    entities: list[dict[str, Any]] = []
    for match in _CURRENCY.finditer(content):
        amount = float(match.group(1).replace(",", ""))
        suffix = (match.group(2) or "").lower()
        entities.append(
            {
                "type": "currency_amount",
                "value": match.group(0).strip(),
                "normalized": amount * _MULTIPLIERS.get(suffix, 1.0),
                "unit": "USD",
                "position": match.start(),
            }
        )
    for match in _PERCENT.finditer(content):
        entities.append(
            {
                "type": "percentage",
                "value": match.group(0),
                "normalized": float(match.group(1)),
                "unit": "%",
                "position": match.start(),
            }
        )
    return sorted(entities, key=lambda e: e["position"])


def categorize_url(url: str) -> str:
    lowered = url.lower()
    for category, needles in _URL_CATEGORIES:
        if any(needle in lowered for needle in needles):
            return category
    return "other"


def _url_context(text: str, needle: str, radius: int = 100) -> str:
    index = text.find(needle)
    if index == -1:
        return ""
    start = max(0, index - radius)
    end = min(len(text), index + len(needle) + radius)
    context = text[start:end].strip()
    if start > 0:
        context = "..." + context
    if end < len(text):
        context = context + "..."
    return context


def _describe_url(url: str, context: str) -> str:
    for sentence in re.split(r"[.!?]+", context):
        sentence = sentence.strip().strip(".")
        if 10 < len(sentence) < 200:
            return sentence
    domain = urlparse(url).hostname or ""
    domain = domain.removeprefix("www.")
    if not domain:
        return "External link"
    return {
        "payment": f"Purchase or checkout page at {domain}",
        "product": f"Product information at {domain}",
        "documentation": f"Documentation at {domain}",
        "social": f"Social media profile at {domain}",
    }.get(categorize_url(url), f"Link to {domain}")


def extract_urls(text: str) -> list[dict[str, str]]:
    """Extract hyperlinks with a description and category, deduplicated by URL.

    Markdown links win over bare URLs because their anchor text is the
    description.
    """

    found: dict[str, dict[str, str]] = {}
    for match in _MARKDOWN_LINK.finditer(text):
        label, url = match.group(1), match.group(2)
        found[url] = {
            "url": url,
            "description": label.strip() or _describe_url(url, _url_context(text, match.group(0))),
            "category": categorize_url(url),
        }
    for match in _STANDARD_URL.finditer(text):
        url = match.group(0).rstrip(".,;:)")
        if url in found:
            continue
        found[url] = {
            "url": url,
            "description": _describe_url(url, _url_context(text, url)),
            "category": categorize_url(url),
        }
    for match in _NAKED_DOMAIN.finditer(text):
        domain = match.group(1).rstrip(".,;:)")
        url = f"https://{domain}"
        if url in found or f"https://www.{domain}" in found:
            continue
        found[url] = {
            "url": url,
            "description": _describe_url(url, _url_context(text, domain)),
            "category": categorize_url(url),
        }
    return list(found.values())


def enrich_chunk_metadata(content: str, metadata: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a copy of `metadata` extended with extracted entities and links."""
    temporal = extract_temporal_entities(content)
    financial = extract_financial_entities(content)
    urls = extract_urls(content)
    return {
        **(metadata or {}),
        "temporal_entities": [entity.as_dict() for entity in temporal],
        "financial_entities": financial,
        "has_financial_data": bool(financial),
        "urls": urls,
        "url_count": len(urls),
        "url_categories": sorted({url["category"] for url in urls}),
    }
