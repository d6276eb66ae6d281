"""End-to-end ingest pipeline: chunk -> enrich -> embed -> upsert."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from langchain_core.embeddings import Embeddings
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential_jitter

from precision_rag.config import IngestConfig
from precision_rag.errors import EmbeddingError
from precision_rag.ingest.chunker import DocumentChunker
from precision_rag.ingest.metadata import enrich_chunk_metadata
from precision_rag.retrieval.vector_store import VectorStore
from precision_rag.types import DocumentChunk, ParsedDocument

logger = logging.getLogger(__name__)


class IngestPipeline:
    """Coordinates chunker/embedder/vector store stages.

    This class isolates ingestion from query-time retrieval so indexing can be
    executed offline, in batch jobs, or behind an upload endpoint. Documents
    are independent, so several can be ingested concurrently.
    """

    def __init__(
        self,
        chunker: DocumentChunker,
        embedder: Embeddings,
        vector_store: VectorStore,
        config: IngestConfig | None = None,
    ) -> None:
        self._chunker = chunker
        self._embedder = embedder
        self._vector_store = vector_store
        self.config = config or IngestConfig()

    async def ingest_text(
        self,
        document_id: str,
        text: str,
        metadata: dict[str, Any] | None = None,
    ) -> list[DocumentChunk]:
        """Ingest raw extracted text under `document_id` and return created chunks.

        Re-ingesting an id replaces its previous chunks. Empty text stores
        nothing. Raises `EmbeddingError` once retries are exhausted.
        """

        document = ParsedDocument(doc_id=document_id, text=text, metadata=dict(metadata or {}))
        return await self.ingest_document(document)

    async def ingest_document(self, document: ParsedDocument) -> list[DocumentChunk]:
        chunks = self._chunker.chunk_document(document)
        if not chunks:
            logger.info("Document %s produced no chunks", document.doc_id)
            return []

        for chunk in chunks:
            chunk.metadata = enrich_chunk_metadata(
                chunk.content, {**chunk.metadata, "document_id": document.doc_id}
            )

        embeddings = await self._embed([chunk.content for chunk in chunks])
        removed = await self._vector_store.delete_document(document.doc_id)
        if removed:
            logger.info("Replaced %d existing chunks of %s", removed, document.doc_id)
        await self._vector_store.upsert(chunks, embeddings)
        logger.info("Ingested %s: %d chunks", document.doc_id, len(chunks))
        return chunks

    async def ingest_many(self, documents: list[ParsedDocument]) -> list[DocumentChunk]:
        """Ingest many documents concurrently and return the flattened chunk list."""

        results = await asyncio.gather(*(self.ingest_document(doc) for doc in documents))
        return [chunk for chunks in results for chunk in chunks]

    async def delete_document(self, document_id: str) -> int:
        """Delete a document and, with it, all of its chunks."""

        removed = await self._vector_store.delete_document(document_id)
        logger.info("Deleted %s (%d chunks)", document_id, removed)
        return removed

    async def _embed(self, texts: list[str]) -> list[list[float]]:
        size = self.config.embedding_batch_size
        vectors: list[list[float]] = []
        for start in range(0, len(texts), size):
            batch = texts[start : start + size]
            vectors.extend(await self._embed_batch(batch, start // size + 1))
        return vectors

    async def _embed_batch(self, batch: list[str], batch_number: int) -> list[list[float]]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential_jitter(
                initial=self.config.retry_initial_seconds,
                max=self.config.retry_max_seconds,
                jitter=self.config.retry_initial_seconds,
            ),
            before_sleep=lambda state: logger.warning(
                "Embedding batch %d failed (attempt %d/%d), retrying",
                batch_number,
                state.attempt_number,
                self.config.max_attempts,
            ),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    vectors = await self._embedder.aembed_documents(batch)
        except Exception as exc:
            raise EmbeddingError(f"embedding batch {batch_number} failed: {exc}") from exc

        if len(vectors) != len(batch):
            raise EmbeddingError(
                f"embedding batch {batch_number} returned {len(vectors)} vectors for {len(batch)} texts"
            )
        return vectors
