"""Exceptions raised by external-service adapters."""

from __future__ import annotations


class RetrievalError(Exception):
    """Base class for failures of an external collaborator."""


class EmbeddingError(RetrievalError):
    """The embedding service failed or returned an unusable vector."""


class VectorSearchError(RetrievalError):
    """The vector store rejected or failed a similarity search."""


class GenerationError(RetrievalError):
    """The text-generation service failed."""


class SearchTimeoutError(RetrievalError):
    """An external call exceeded its time budget."""
