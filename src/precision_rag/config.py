"""Configuration models for the retrieval core."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ChunkStrategy = Literal["sentence", "token", "character"]
PerformanceMode = Literal["fast", "balanced", "accurate"]


class ChunkingConfig(BaseModel):
    """Configures paragraph (token) and fixed-window (character) chunking.

    `max_tokens` / `overlap_tokens` bound the sentence/token strategy, while
    `chunk_size` / `chunk_overlap` bound the character strategy. Token counts
    are estimated as `ceil(len(text) / chars_per_token)`.
    """

    strategy: ChunkStrategy = "sentence"
    chunk_size: int = Field(default=1500, ge=20)
    chunk_overlap: int = Field(default=100, ge=0)
    max_tokens: int = Field(default=600, ge=1)
    overlap_tokens: int = Field(default=100, ge=0)
    chars_per_token: float = Field(default=4.0, gt=0.0)
    min_chunk_chars: int = Field(default=10, ge=0)

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingConfig":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be less than chunk_size")
        if self.overlap_tokens >= self.max_tokens:
            raise ValueError("overlap_tokens must be less than max_tokens")
        return self

    @classmethod
    def from_character_settings(
        cls, chunk_size: int, chunk_overlap: int, strategy: ChunkStrategy = "sentence"
    ) -> "ChunkingConfig":
        """Derive token budgets from character-denominated settings (4 chars/token).

        The token overlap is clamped below `max_tokens`, since flooring both
        values can make them equal even when `chunk_overlap < chunk_size`.
        """
        max_tokens = max(1, chunk_size // 4)
        return cls(
            strategy=strategy,
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            max_tokens=max_tokens,
            overlap_tokens=min(chunk_overlap // 4, max_tokens - 1),
        )


class PrecisionThresholds(BaseModel):
    """Similarity cutoffs per precision tier."""

    exact: float = Field(default=0.75, ge=-1.0, le=1.0)
    high: float = Field(default=0.65, ge=-1.0, le=1.0)
    medium: float = Field(default=0.55, ge=-1.0, le=1.0)
    low: float = Field(default=0.45, ge=-1.0, le=1.0)

    def for_precision(self, precision: str) -> float:
        return float(getattr(self, precision))


class RetrievalConfig(BaseModel):
    """Configures multi-angle retrieval fan-out and fallbacks."""

    match_count: int = Field(default=10, ge=1)
    similarity_threshold: float = Field(default=0.5, ge=-1.0, le=1.0)
    lower_threshold: float = Field(default=0.35, ge=-1.0, le=1.0)
    angle_match_count: int = Field(default=3, ge=1)
    max_concepts: int = Field(default=2, ge=0)
    max_alternatives: int = Field(default=2, ge=0)
    call_timeout_seconds: float = Field(default=10.0, gt=0.0)
    performance_mode: PerformanceMode = "balanced"


class EnhancerConfig(BaseModel):
    """Configures the reasoning-based query analysis call."""

    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=500, ge=16)
    default_effort: Literal["low", "medium", "high"] = "low"
    default_reasoning_tokens: int = Field(default=2000, ge=1)
    timeout_seconds: float = Field(default=20.0, gt=0.0)


class IngestConfig(BaseModel):
    """Configures batched embedding during ingestion."""

    embedding_batch_size: int = Field(default=100, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    retry_initial_seconds: float = Field(default=1.0, ge=0.0)
    retry_max_seconds: float = Field(default=30.0, ge=0.0)


class Settings(BaseSettings):
    """Environment-level settings (prefix `RAG_`)."""

    model_config = SettingsConfigDict(env_prefix="RAG_", env_file=".env", extra="ignore")

    chunk_size: int = 1500
    chunk_overlap: int = 100
    chunk_strategy: ChunkStrategy = "sentence"
    embedding_model: str = "text-embedding-3-small"
    embedding_batch_size: int = 100
    exact_threshold: float = 0.75
    high_threshold: float = 0.65
    medium_threshold: float = 0.55
    low_threshold: float = 0.45
    similarity_threshold: float = 0.5
    final_result_count: int = 10
    log_level: str = "INFO"

    def chunking(self) -> ChunkingConfig:
        return ChunkingConfig.from_character_settings(
            self.chunk_size, self.chunk_overlap, self.chunk_strategy
        )

    def thresholds(self) -> PrecisionThresholds:
        return PrecisionThresholds(
            exact=self.exact_threshold,
            high=self.high_threshold,
            medium=self.medium_threshold,
            low=self.low_threshold,
        )

    def retrieval(self) -> RetrievalConfig:
        return RetrievalConfig(
            match_count=self.final_result_count,
            similarity_threshold=self.similarity_threshold,
        )

    def ingest(self) -> IngestConfig:
        return IngestConfig(embedding_batch_size=self.embedding_batch_size)
