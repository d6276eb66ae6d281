import asyncio

import pytest
from langchain_core.embeddings import Embeddings

from precision_rag.config import RetrievalConfig
from precision_rag.ingest.embedder import HashingEmbedder
from precision_rag.query.enhancer import QueryUnderstanding
from precision_rag.retrieval.engine import RetrievalEngine, merge_results
from precision_rag.retrieval.vector_store import InMemoryVectorStore
from precision_rag.types import DocumentChunk, SearchResult


def _hit(chunk_id: str, similarity: float, content: str = "text") -> SearchResult:
    return SearchResult(chunk_id=chunk_id, document_id="doc", content=content, similarity=similarity)


class ScriptedStore:
    """Returns canned results per query vector and records requests."""

    def __init__(self, embedder: Embeddings, by_text: dict[str, list[SearchResult]]) -> None:
        self._by_vector = {tuple(embedder.embed_query(text)): hits for text, hits in by_text.items()}
        self.requests: list[tuple[int, float]] = []

    async def search(self, query_embedding, k, threshold):
        self.requests.append((k, threshold))
        return list(self._by_vector.get(tuple(query_embedding), []))[:k]

    async def get_metadata(self, chunk_ids):
        return {}


class FlakyEmbedder(Embeddings):
    """Fails (or hangs) for selected texts, otherwise delegates to hashing."""

    def __init__(self, fail_on: set[str] | None = None, hang_on: set[str] | None = None, fail_times: int = 10**6) -> None:
        self._inner = HashingEmbedder()
        self.fail_on = fail_on or set()
        self.hang_on = hang_on or set()
        self.fail_times = fail_times
        self.failures = 0

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return self._inner.embed_documents(texts)

    def embed_query(self, text: str) -> list[float]:
        return self._inner.embed_query(text)

    async def aembed_query(self, text: str) -> list[float]:
        if text in self.hang_on:
            await asyncio.sleep(5)
        if text in self.fail_on and self.failures < self.fail_times:
            self.failures += 1
            raise ConnectionError(f"embedding service unavailable for {text!r}")
        return self._inner.embed_query(text)


def test_merge_keeps_highest_similarity_for_duplicate_ids() -> None:
    merged, considered = merge_results([[_hit("c1", 0.6), _hit("c2", 0.5)], [_hit("c1", 0.8)]])

    assert [(hit.chunk_id, hit.similarity) for hit in merged] == [("c1", 0.8), ("c2", 0.5)]
    assert considered == 3


def test_merge_is_idempotent() -> None:
    results = [_hit("a", 0.9), _hit("b", 0.7), _hit("c", 0.4)]
    merged, considered = merge_results([results, results])

    assert merged == results
    assert considered == 6


def test_merge_is_order_independent() -> None:
    first = [_hit("a", 0.3), _hit("b", 0.9)]
    second = [_hit("a", 0.8), _hit("c", 0.5)]

    forward, _ = merge_results([first, second])
    backward, _ = merge_results([second, first])

    assert [(h.chunk_id, h.similarity) for h in forward] == [(h.chunk_id, h.similarity) for h in backward]


def test_plan_angles_follows_strategy_and_mode() -> None:
    engine = RetrievalEngine(InMemoryVectorStore(), HashingEmbedder())
    understanding = QueryUnderstanding(
        key_concepts=["k1", "k2", "k3"], search_queries=["s1", "s2", "s3"], search_strategy="hybrid"
    )

    balanced = engine.plan_angles(understanding, "q", 10)
    assert [(a.label, a.text, a.k) for a in balanced] == [
        ("original", "q", 5),
        ("concept", "k1", 3),
        ("concept", "k2", 3),
        ("alternative", "s1", 3),
        ("alternative", "s2", 3),
    ]
    assert len(engine.plan_angles(understanding, "q", 10, "fast")) == 3
    capped = engine.plan_angles(understanding, "q", 10, "accurate")
    assert len(capped) == 5
    assert sum(a.label == "concept" for a in capped) == 2
    assert sum(a.label == "alternative" for a in capped) == 2

    broad = understanding.model_copy(update={"search_strategy": "broad"})
    assert {a.label for a in engine.plan_angles(broad, "q", 9)} == {"original", "concept"}
    specific = understanding.model_copy(update={"search_strategy": "specific"})
    assert {a.label for a in engine.plan_angles(specific, "q", 9)} == {"original", "alternative"}


@pytest.mark.asyncio
async def test_intelligent_search_merges_angles_and_dedups() -> None:
    embedder = HashingEmbedder()
    store = ScriptedStore(
        embedder,
        {
            "original question": [_hit("c1", 0.6), _hit("c2", 0.55)],
            "concept one": [_hit("c1", 0.8), _hit("c3", 0.7)],
            "alt phrase": [_hit("c4", 0.65)],
        },
    )
    engine = RetrievalEngine(store, embedder, RetrievalConfig(match_count=3))
    understanding = QueryUnderstanding(
        key_concepts=["concept one"], search_queries=["alt phrase"], search_strategy="hybrid"
    )

    result = await engine.intelligent_search(understanding, "original question", similarity_threshold=0.4)

    assert result.reasoning_applied
    assert result.search_strategy_used == "hybrid"
    assert result.total_chunks_considered == 5
    assert [(h.chunk_id, h.similarity) for h in result.chunks] == [("c1", 0.8), ("c3", 0.7), ("c4", 0.65)]
    assert (2, 0.4) in store.requests
    assert all(threshold == 0.4 for _, threshold in store.requests)


@pytest.mark.asyncio
async def test_angle_searches_run_concurrently() -> None:
    embedder = HashingEmbedder()

    class SlowStore(ScriptedStore):
        def __init__(self) -> None:
            super().__init__(embedder, {})
            self.in_flight = 0
            self.peak = 0

        async def search(self, query_embedding, k, threshold):
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
            await asyncio.sleep(0.2)
            self.in_flight -= 1
            return []

    store = SlowStore()
    engine = RetrievalEngine(store, embedder)
    understanding = QueryUnderstanding(
        key_concepts=["concept one"], search_queries=["alt phrase"], search_strategy="hybrid"
    )

    loop = asyncio.get_running_loop()
    started = loop.time()
    result = await engine.intelligent_search(understanding, "original question")
    elapsed = loop.time() - started

    assert result.reasoning_applied
    assert store.peak == 3
    assert elapsed < 0.4


@pytest.mark.asyncio
async def test_failed_optional_angle_is_dropped() -> None:
    embedder = FlakyEmbedder(fail_on={"concept one"})
    store = ScriptedStore(embedder, {"original question": [_hit("c1", 0.6)], "alt phrase": [_hit("c2", 0.7)]})
    engine = RetrievalEngine(store, embedder)
    understanding = QueryUnderstanding(
        key_concepts=["concept one"], search_queries=["alt phrase"], search_strategy="hybrid"
    )

    result = await engine.intelligent_search(understanding, "original question")

    assert result.reasoning_applied
    assert [h.chunk_id for h in result.chunks] == ["c2", "c1"]


@pytest.mark.asyncio
async def test_slow_optional_angle_times_out_without_blocking_others() -> None:
    embedder = FlakyEmbedder(hang_on={"concept one"})
    store = ScriptedStore(embedder, {"original question": [_hit("c1", 0.6)]})
    engine = RetrievalEngine(store, embedder, RetrievalConfig(call_timeout_seconds=0.05))
    understanding = QueryUnderstanding(key_concepts=["concept one"], search_strategy="broad")

    result = await engine.intelligent_search(understanding, "original question")

    assert result.reasoning_applied
    assert [h.chunk_id for h in result.chunks] == ["c1"]


@pytest.mark.asyncio
async def test_primary_failure_falls_back_to_plain_search() -> None:
    embedder = FlakyEmbedder(fail_on={"original question"}, fail_times=1)
    store = ScriptedStore(
        embedder,
        {"original question": [_hit("c1", 0.6), _hit("c2", 0.5)], "concept one": [_hit("c9", 0.9)]},
    )
    engine = RetrievalEngine(store, embedder, RetrievalConfig(match_count=4))
    understanding = QueryUnderstanding(key_concepts=["concept one"], search_strategy="broad")

    result = await engine.intelligent_search(understanding, "original question", similarity_threshold=0.45)

    assert not result.reasoning_applied
    assert result.search_strategy_used == "fallback"
    assert [h.chunk_id for h in result.chunks] == ["c1", "c2"]
    assert result.total_chunks_considered == 2
    assert store.requests[-1] == (4, 0.45)


@pytest.mark.asyncio
async def test_fallback_failure_still_returns_result() -> None:
    embedder = FlakyEmbedder(fail_on={"original question"})
    engine = RetrievalEngine(ScriptedStore(embedder, {}), embedder)
    understanding = QueryUnderstanding.fallback("original question")

    result = await engine.intelligent_search(understanding, "original question")

    assert not result.reasoning_applied
    assert result.search_strategy_used == "fallback"
    assert result.chunks == []


@pytest.mark.asyncio
async def test_plain_search_retries_at_lower_threshold() -> None:
    embedder = HashingEmbedder()

    class ThresholdStore(ScriptedStore):
        async def search(self, query_embedding, k, threshold):
            self.requests.append((k, threshold))
            return [_hit("low", 0.4)] if threshold <= 0.4 else []

    store = ThresholdStore(embedder, {})
    engine = RetrievalEngine(store, embedder)

    result = await engine.plain_search("q", match_count=5, similarity_threshold=0.75, strategy="exact_match")

    assert store.requests == [(5, 0.75), (5, 0.35)]
    assert result.search_strategy_used == "exact_match+lower_threshold"
    assert [h.chunk_id for h in result.chunks] == ["low"]
    assert not result.reasoning_applied


@pytest.mark.asyncio
async def test_in_memory_store_filters_threshold_and_cascades_delete() -> None:
    embedder = HashingEmbedder()
    store = InMemoryVectorStore()
    texts = ["quarterly revenue grew", "employee handbook policy", "revenue grew strongly"]
    chunks = [
        DocumentChunk(chunk_id=f"{doc}-{i}", document_id=doc, content=text, token_count=3)
        for i, (doc, text) in enumerate(zip(["d1", "d2", "d1"], texts))
    ]
    await store.upsert(chunks, embedder.embed_documents(texts))

    hits = await store.search(embedder.embed_query("quarterly revenue grew"), 5, 0.5)
    assert hits[0].chunk_id == "d1-0"
    assert hits[0].similarity == pytest.approx(1.0)
    assert all(hit.similarity >= 0.5 for hit in hits)
    assert [h.similarity for h in hits] == sorted((h.similarity for h in hits), reverse=True)

    assert await store.delete_document("d1") == 2
    assert len(store) == 1
    assert await store.search(embedder.embed_query("quarterly revenue grew"), 5, 0.5) == []
