"""Embedding adapters built on the LangChain `Embeddings` interface."""

from __future__ import annotations

import logging
from collections.abc import Callable
from hashlib import blake2b
from math import sqrt

from langchain_core.embeddings import Embeddings

from precision_rag.retrieval.cache import EmbeddingCache, NullEmbeddingCache

logger = logging.getLogger(__name__)


class HashingEmbedder(Embeddings):
    """Deterministic sparse-like embedding without external model calls.

    Used for local runs and deterministic tests. In production pass any
    LangChain embeddings implementation (e.g. `OpenAIEmbeddings`) instead.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension
        self.model_id = f"hashing-{dimension}"

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class CachedEmbedder(Embeddings):
    """Wraps an embedder with a cache keyed by `(model_id, text)`.

    The cache is an optimisation only: every miss is recomputed by the wrapped
    embedder, and nothing is cached when the wrapped call raises.
    """

    def __init__(
        self,
        embedder: Embeddings,
        cache: EmbeddingCache | None = None,
        *,
        model_id: str | None = None,
    ) -> None:
        self._embedder = embedder
        self._cache = cache or NullEmbeddingCache()
        self.model_id = model_id or _model_identity(embedder)

    def embed_query(self, text: str) -> list[float]:
        cached = self._cache.get((self.model_id, text))
        if cached is not None:
            return cached
        vector = self._embedder.embed_query(text)
        self._cache.set((self.model_id, text), vector)
        return vector

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return self._fill(texts, self._embedder.embed_documents)

    async def aembed_query(self, text: str) -> list[float]:
        cached = self._cache.get((self.model_id, text))
        if cached is not None:
            return cached
        vector = await self._embedder.aembed_query(text)
        self._cache.set((self.model_id, text), vector)
        return vector

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        results, missing = self._lookup(texts)
        if missing:
            vectors = await self._embedder.aembed_documents([texts[i] for i in missing])
            self._store(texts, missing, vectors, results)
        return [vector for vector in results if vector is not None]

    def _fill(
        self, texts: list[str], compute: Callable[[list[str]], list[list[float]]]
    ) -> list[list[float]]:
        results, missing = self._lookup(texts)
        if missing:
            vectors = compute([texts[i] for i in missing])
            self._store(texts, missing, vectors, results)
        return [vector for vector in results if vector is not None]

    def _lookup(self, texts: list[str]) -> tuple[list[list[float] | None], list[int]]:
        results: list[list[float] | None] = []
        missing: list[int] = []
        for index, text in enumerate(texts):
            cached = self._cache.get((self.model_id, text))
            results.append(cached)
            if cached is None:
                missing.append(index)
        if texts:
            logger.debug("Embedding cache hits: %d/%d", len(texts) - len(missing), len(texts))
        return results, missing

    def _store(
        self,
        texts: list[str],
        missing: list[int],
        vectors: list[list[float]],
        results: list[list[float] | None],
    ) -> None:
        if len(vectors) != len(missing):
            raise ValueError("embedder returned a different number of vectors than inputs")
        for index, vector in zip(missing, vectors, strict=True):
            results[index] = vector
            self._cache.set((self.model_id, texts[index]), vector)


def _model_identity(embedder: Embeddings) -> str:
    for attr in ("model_id", "model", "model_name"):
        value = getattr(embedder, attr, None)
        if isinstance(value, str) and value:
            return value
    return type(embedder).__name__
