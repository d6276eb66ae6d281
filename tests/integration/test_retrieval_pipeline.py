import pytest
from langchain_core.embeddings import Embeddings

from precision_rag.config import ChunkingConfig, IngestConfig, RetrievalConfig
from precision_rag.errors import EmbeddingError
from precision_rag.ingest.chunker import DocumentChunker
from precision_rag.ingest.embedder import HashingEmbedder
from precision_rag.ingest.pipeline import IngestPipeline
from precision_rag.obs.tracing import RetrievalTraceStore
from precision_rag.orchestrator import RetrievalOptions, RetrievalPipeline
from precision_rag.query.enhancer import QueryEnhancer, ReasoningOptions
from precision_rag.retrieval.engine import RetrievalEngine
from precision_rag.retrieval.vector_store import InMemoryVectorStore


_APPLE_Q1 = "Apple reported Q1 2024 revenue of $119.6B, up 2% year over year."
_OFFICE_Q3 = "In Q3 2021 the company opened a new office in Austin for revenue teams."
_ANALYSIS = (
    '{"key_concepts": ["Apple revenue"], "search_queries": ["Apple Q1 2024 sales"], '
    '"context_needed": "quarterly figures", "search_strategy": "hybrid"}'
)


class RecordingEmbedder(Embeddings):
    def __init__(self, failures: int = 0) -> None:
        self._inner = HashingEmbedder()
        self.failures = failures
        self.batches: list[list[str]] = []

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return self._inner.embed_documents(texts)

    def embed_query(self, text: str) -> list[float]:
        return self._inner.embed_query(text)

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        self.batches.append(list(texts))
        if self.failures:
            self.failures -= 1
            raise ConnectionError("embedding service reset")
        return self._inner.embed_documents(texts)


class StubGenerator:
    def __init__(self) -> None:
        self.calls = 0

    async def generate(self, prompt, *, model_id, max_tokens, temperature, reasoning):
        self.calls += 1
        return _ANALYSIS


def _ingest(embedder: Embeddings, store: InMemoryVectorStore, **kwargs) -> IngestPipeline:
    config = IngestConfig(**{"retry_initial_seconds": 0, "retry_max_seconds": 0, **kwargs})
    return IngestPipeline(DocumentChunker(ChunkingConfig()), embedder, store, config)


def _pipeline(store: InMemoryVectorStore, **kwargs) -> RetrievalPipeline:
    embedder = HashingEmbedder()
    return RetrievalPipeline(
        engine=RetrievalEngine(store, embedder, RetrievalConfig()),
        vector_store=store,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_ingest_enriches_and_stores_chunks() -> None:
    store = InMemoryVectorStore()
    chunks = await _ingest(HashingEmbedder(), store).ingest_text("apple", _APPLE_Q1, {"source": "10-Q"})

    assert len(chunks) == 1
    metadata = (await store.get_metadata([chunks[0].chunk_id]))[chunks[0].chunk_id]
    assert metadata["document_id"] == "apple"
    assert metadata["source"] == "10-Q"
    assert metadata["chunk_index"] == 0
    assert metadata["total_chunks"] == 1
    assert metadata["temporal_entities"][0]["normalized"] == "Q1 2024"
    assert metadata["has_financial_data"] is True


@pytest.mark.asyncio
async def test_ingest_empty_text_stores_nothing() -> None:
    store = InMemoryVectorStore()
    assert await _ingest(HashingEmbedder(), store).ingest_text("empty", "  \n\n ") == []
    assert len(store) == 0


@pytest.mark.asyncio
async def test_ingest_embeds_in_batches_and_retries_transient_errors() -> None:
    store = InMemoryVectorStore()
    embedder = RecordingEmbedder(failures=1)
    text = "\n\n".join(f"Paragraph {i} " + "word " * 400 for i in range(3))

    chunks = await _ingest(embedder, store, embedding_batch_size=2).ingest_text("long", text)

    assert len(chunks) == 3
    assert [len(batch) for batch in embedder.batches] == [2, 2, 1]
    assert len(store) == 3


@pytest.mark.asyncio
async def test_ingest_raises_embedding_error_after_retries() -> None:
    embedder = RecordingEmbedder(failures=10)
    pipeline = _ingest(embedder, InMemoryVectorStore(), max_attempts=2)

    with pytest.raises(EmbeddingError):
        await pipeline.ingest_text("doc", _APPLE_Q1)
    assert len(embedder.batches) == 2


@pytest.mark.asyncio
async def test_reingest_replaces_and_delete_cascades() -> None:
    store = InMemoryVectorStore()
    pipeline = _ingest(HashingEmbedder(), store)
    await pipeline.ingest_text("doc", "\n\n".join(["alpha " * 400, "beta " * 400]))
    assert len(store) == 2

    await pipeline.ingest_text("doc", _APPLE_Q1)
    assert len(store) == 1

    assert await pipeline.delete_document("doc") == 1
    assert len(store) == 0


@pytest.mark.asyncio
async def test_exact_query_rejects_chunks_from_other_periods() -> None:
    store = InMemoryVectorStore()
    ingest = _ingest(HashingEmbedder(), store)
    await ingest.ingest_text("apple", _APPLE_Q1)
    await ingest.ingest_text("office", _OFFICE_Q3)
    traces = RetrievalTraceStore()

    result = await _pipeline(store, trace_store=traces).retrieve(
        "What was Apple's Q1 2024 revenue?", RetrievalOptions(similarity_threshold=-1.0)
    )

    assert result.query_context.required_precision == "exact"
    assert not result.reasoning_applied
    assert result.search_strategy_used == "exact_match"
    assert [scored.result.document_id for scored in result.chunks] == ["apple"]
    assert result.chunks_rejected == 1
    assert result.chunks[0].validation.score == 1.0
    assert traces.get(result.trace_id).chunks_rejected == 1


@pytest.mark.asyncio
async def test_exact_query_with_non_year_number_keeps_matching_year() -> None:
    store = InMemoryVectorStore()
    await _ingest(HashingEmbedder(), store).ingest_text(
        "cohort", "In 2023 revenue per 1000 customers was $52,000."
    )

    result = await _pipeline(store).retrieve(
        "What was revenue per 1000 customers in 2023?", RetrievalOptions(similarity_threshold=-1.0)
    )

    assert result.query_context.timeframe == "2023"
    assert [scored.result.document_id for scored in result.chunks] == ["cohort"]
    assert result.chunks_rejected == 0


@pytest.mark.asyncio
async def test_lower_precision_query_reranks_instead_of_filtering() -> None:
    store = InMemoryVectorStore()
    ingest = _ingest(HashingEmbedder(), store)
    await ingest.ingest_text("apple", _APPLE_Q1)
    await ingest.ingest_text("office", _OFFICE_Q3)

    result = await _pipeline(store).retrieve(
        "Summarize revenue trends in Q1 2024", RetrievalOptions(similarity_threshold=-1.0)
    )

    assert result.query_context.required_precision == "high"
    assert {scored.result.document_id for scored in result.chunks} == {"apple", "office"}
    assert result.chunks[0].result.document_id == "apple"
    assert result.chunks_rejected == 0


@pytest.mark.asyncio
async def test_reasoning_models_take_the_multi_angle_path() -> None:
    store = InMemoryVectorStore()
    await _ingest(HashingEmbedder(), store).ingest_text("apple", _APPLE_Q1)
    generator = StubGenerator()
    pipeline = _pipeline(store, enhancer=QueryEnhancer(generator))

    result = await pipeline.retrieve(
        "What was Apple's Q1 2024 revenue?",
        RetrievalOptions(
            model_id="openai/o3-mini",
            reasoning=ReasoningOptions(enabled=True),
            similarity_threshold=-1.0,
        ),
    )

    assert generator.calls == 1
    assert result.reasoning_applied
    assert result.search_strategy_used == "hybrid"
    assert result.understanding is not None
    assert result.understanding.key_concepts == ["Apple revenue"]
    assert [scored.result.chunk_id for scored in result.chunks] == ["apple-chunk-0000"]
    assert result.total_chunks_considered == 3


@pytest.mark.asyncio
async def test_non_reasoning_model_skips_enhancement() -> None:
    store = InMemoryVectorStore()
    generator = StubGenerator()
    pipeline = _pipeline(store, enhancer=QueryEnhancer(generator))

    result = await pipeline.retrieve(
        "What was Apple's Q1 2024 revenue?",
        RetrievalOptions(model_id="openai/gpt-4o-mini", reasoning=ReasoningOptions(enabled=True)),
    )

    assert generator.calls == 0
    assert result.understanding is None
    assert not result.reasoning_applied


@pytest.mark.asyncio
async def test_disable_rag_returns_empty_result() -> None:
    store = InMemoryVectorStore()
    await _ingest(HashingEmbedder(), store).ingest_text("apple", _APPLE_Q1)

    result = await _pipeline(store).retrieve("anything", RetrievalOptions(disable_rag=True))

    assert result.chunks == []
    assert result.search_strategy_used == "disabled"
    assert result.query_context is None
