"""Vector store interfaces and concrete adapters."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from math import sqrt
from typing import Any, Protocol

from precision_rag.types import DocumentChunk, SearchResult


class VectorStore(Protocol):
    """Similarity store contract consumed by ingestion and retrieval."""

    async def upsert(self, chunks: list[DocumentChunk], embeddings: list[list[float]]) -> None:
        """Insert or update chunk vectors."""

    async def search(
        self, query_embedding: list[float], k: int, threshold: float
    ) -> list[SearchResult]:
        """Return up to `k` hits with similarity >= `threshold`, best first."""

    async def delete_document(self, document_id: str) -> int:
        """Delete every chunk of `document_id`; return how many were removed."""

    async def get_metadata(self, chunk_ids: list[str]) -> dict[str, dict[str, Any]]:
        """Return stored metadata keyed by chunk id (missing ids are omitted)."""


@dataclass(slots=True)
class _StoredVector:
    chunk: DocumentChunk
    embedding: list[float]


class InMemoryVectorStore:
    """Deterministic vector store used for tests and local prototyping."""

    def __init__(self) -> None:
        self._store: dict[str, _StoredVector] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, chunks: list[DocumentChunk], embeddings: list[list[float]]) -> None:
        if len(chunks) != len(embeddings):
            raise ValueError("chunks and embeddings must have the same length")
        async with self._lock:
            for chunk, embedding in zip(chunks, embeddings, strict=True):
                self._store[chunk.chunk_id] = _StoredVector(chunk=chunk, embedding=embedding)

    async def search(
        self, query_embedding: list[float], k: int, threshold: float
    ) -> list[SearchResult]:
        if k <= 0:
            return []
        hits = []
        for record in list(self._store.values()):
            similarity = _cosine_similarity(query_embedding, record.embedding)
            if similarity < threshold:
                continue
            hits.append(
                SearchResult(
                    chunk_id=record.chunk.chunk_id,
                    document_id=record.chunk.document_id,
                    content=record.chunk.content,
                    similarity=similarity,
                    metadata=dict(record.chunk.metadata),
                )
            )
        hits.sort(key=lambda hit: (-hit.similarity, hit.chunk_id))
        return hits[:k]

    async def delete_document(self, document_id: str) -> int:
        async with self._lock:
            doomed = [
                chunk_id
                for chunk_id, record in self._store.items()
                if record.chunk.document_id == document_id
            ]
            for chunk_id in doomed:
                del self._store[chunk_id]
        return len(doomed)

    async def get_metadata(self, chunk_ids: list[str]) -> dict[str, dict[str, Any]]:
        return {
            chunk_id: dict(self._store[chunk_id].chunk.metadata)
            for chunk_id in chunk_ids
            if chunk_id in self._store
        }

    def document_ids(self) -> list[str]:
        return sorted({record.chunk.document_id for record in self._store.values()})

    def __len__(self) -> int:
        return len(self._store)


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
