"""Precision-aware retrieval core for knowledge-grounded chat."""

from .config import ChunkingConfig, PrecisionThresholds, RetrievalConfig, Settings
from .query.classifier import classify_query

__all__ = [
    "ChunkingConfig",
    "PrecisionThresholds",
    "RetrievalConfig",
    "Settings",
    "classify_query",
]
