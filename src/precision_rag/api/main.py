"""FastAPI entrypoint for document, classification, retrieval and trace endpoints."""

from __future__ import annotations

import os
from dataclasses import asdict
from typing import Any, Literal

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from precision_rag.config import Settings
from precision_rag.errors import EmbeddingError
from precision_rag.ingest.chunker import DocumentChunker
from precision_rag.ingest.embedder import CachedEmbedder, HashingEmbedder
from precision_rag.ingest.pipeline import IngestPipeline
from precision_rag.obs.logging import setup_logging
from precision_rag.obs.tracing import RetrievalTraceStore
from precision_rag.orchestrator import RetrievalOptions, RetrievalPipeline
from precision_rag.query.classifier import classify_query
from precision_rag.query.enhancer import ChatModelGenerator, QueryEnhancer, ReasoningOptions
from precision_rag.retrieval.cache import LRUEmbeddingCache
from precision_rag.retrieval.engine import RetrievalEngine
from precision_rag.retrieval.vector_store import InMemoryVectorStore


def _create_llm() -> Any:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    # Per-request model ids are bound at call time; OPENAI_BASE_URL may point at a router.
    return ChatOpenAI(
        model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        base_url=os.getenv("OPENAI_BASE_URL"),
        temperature=0,
    )


class DocumentRequest(BaseModel):
    document_id: str = Field(min_length=1)
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ClassifyRequest(BaseModel):
    query: str


class ReasoningRequest(BaseModel):
    enabled: bool = False
    effort: Literal["low", "medium", "high"] | None = None
    max_tokens: int | None = Field(default=None, ge=1)


class RetrieveRequest(BaseModel):
    query: str = Field(min_length=1)
    model_id: str = ""
    reasoning: ReasoningRequest = Field(default_factory=ReasoningRequest)
    disable_rag: bool = False
    match_count: int | None = Field(default=None, ge=1, le=50)
    similarity_threshold: float | None = Field(default=None, ge=-1.0, le=1.0)
    performance_mode: Literal["fast", "balanced", "accurate"] | None = None


_settings = Settings()
setup_logging(_settings.log_level)

_retrieval_config = _settings.retrieval()
_embedder = CachedEmbedder(HashingEmbedder(), LRUEmbeddingCache(max_entries=4096))
_vector_store = InMemoryVectorStore()
_ingest_pipeline = IngestPipeline(
    DocumentChunker(_settings.chunking()), _embedder, _vector_store, _settings.ingest()
)

_trace_store = RetrievalTraceStore()
_llm = _create_llm()
_pipeline = RetrievalPipeline(
    engine=RetrievalEngine(_vector_store, _embedder, _retrieval_config),
    vector_store=_vector_store,
    enhancer=QueryEnhancer(ChatModelGenerator(_llm)) if _llm is not None else None,
    thresholds=_settings.thresholds(),
    config=_retrieval_config,
    trace_store=_trace_store,
)

app = FastAPI(title="Precision RAG", version="0.1.0")


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": _llm is not None,
        "enhancer_mode": "reasoning" if _llm is not None else "disabled",
        "documents": len(_vector_store.document_ids()),
        "chunks": len(_vector_store),
        "trace_count": len(_trace_store),
    }


@app.post("/documents")
async def ingest_document(request: DocumentRequest) -> dict[str, Any]:
    try:
        chunks = await _ingest_pipeline.ingest_text(
            request.document_id, request.text, request.metadata
        )
    except EmbeddingError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return {
        "document_id": request.document_id,
        "chunks_created": len(chunks),
        "chunk_ids": [chunk.chunk_id for chunk in chunks],
    }


@app.delete("/documents/{document_id}")
async def delete_document(document_id: str) -> dict[str, Any]:
    removed = await _ingest_pipeline.delete_document(document_id)
    if removed == 0:
        raise HTTPException(status_code=404, detail=f"Document not found: {document_id}")
    return {"document_id": document_id, "chunks_deleted": removed}


@app.post("/classify")
def classify(request: ClassifyRequest) -> dict[str, Any]:
    return asdict(classify_query(request.query, _settings.thresholds()))


@app.post("/retrieve")
async def retrieve(request: RetrieveRequest) -> dict[str, Any]:
    options = RetrievalOptions(
        model_id=request.model_id,
        reasoning=ReasoningOptions(**request.reasoning.model_dump()),
        disable_rag=request.disable_rag,
        match_count=request.match_count,
        similarity_threshold=request.similarity_threshold,
        performance_mode=request.performance_mode,
    )
    result = await _pipeline.retrieve(request.query, options)
    return result.as_payload()


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    return {"items": [asdict(record) for record in _trace_store.list_recent(limit=limit)]}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()
