"""Reasoning-based query analysis ahead of retrieval."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from langchain_core.language_models import BaseChatModel
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_core.utils.json import parse_json_markdown
from pydantic import BaseModel, Field, ValidationError

from precision_rag.config import EnhancerConfig
from precision_rag.errors import GenerationError, SearchTimeoutError
from precision_rag.query.capabilities import build_reasoning_config, supports_reasoning

logger = logging.getLogger(__name__)

FALLBACK_CONTEXT = "General information about the query topic"

_ANALYSIS_PROMPT = """
Analyze this user query for document search. Think step by step about what information would be most helpful to answer this query.

Query: "{query}"

Consider:
1. What are the key concepts and topics mentioned?
2. What alternative ways might this information be described in documents?
3. What type of context would be most valuable?
4. Should we search broadly or focus on specific terms?

Output your analysis as JSON in this exact format:
{{
  "key_concepts": ["concept1", "concept2", "concept3"],
  "search_queries": ["alternative phrase 1", "alternative phrase 2"],
  "context_needed": "description of what type of information would help",
  "search_strategy": "broad|specific|hybrid"
}}
""".strip()

_GROUNDED_PROMPT = """
You are an AI assistant with advanced reasoning capabilities and access to a knowledge base.

Rules:
1) Use ONLY the information in "Context from knowledge base" below.
2) If the answer is not in the context, say "This information is not in my knowledge base".
3) Never invent figures, dates or names that the context does not state.
4) Quote or reference the relevant part of the context when possible.

Context from knowledge base:
{context}

Instructions from base prompt:
{base_prompt}
""".strip()


class QueryUnderstanding(BaseModel):
    """Structured analysis returned by the generation service."""

    key_concepts: list[str] = Field(min_length=1)
    search_queries: list[str] = Field(default_factory=list)
    context_needed: str = FALLBACK_CONTEXT
    search_strategy: Literal["broad", "specific", "hybrid"] = "hybrid"

    @classmethod
    def fallback(cls, query: str) -> "QueryUnderstanding":
        return cls(
            key_concepts=[query],
            search_queries=[query],
            context_needed=FALLBACK_CONTEXT,
            search_strategy="hybrid",
        )


@dataclass(frozen=True, slots=True)
class ReasoningOptions:
    """Caller's reasoning opt-in for one request."""

    enabled: bool = False
    effort: str | None = None
    max_tokens: int | None = None


class TextGenerator(Protocol):
    """Text-generation service contract."""

    async def generate(
        self,
        prompt: str,
        *,
        model_id: str,
        max_tokens: int,
        temperature: float,
        reasoning: dict[str, Any],
    ) -> str:
        """Return the text generated for `prompt` by the model named `model_id`."""


class ChatModelGenerator:
    """`TextGenerator` backed by any LangChain chat model.

    The requested `model_id` is bound as the `model` call parameter, so one
    client (for example an OpenAI-compatible router) serves every model id.
    """

    def __init__(self, llm: BaseChatModel) -> None:
        self.llm = llm
        self._prompt = ChatPromptTemplate.from_messages([("human", "{prompt}")])

    async def generate(
        self,
        prompt: str,
        *,
        model_id: str,
        max_tokens: int,
        temperature: float,
        reasoning: dict[str, Any],
    ) -> str:
        params: dict[str, Any] = {"max_tokens": max_tokens, "temperature": temperature}
        if model_id:
            params["model"] = model_id
        if reasoning:
            params["extra_body"] = {"reasoning": reasoning}
        chain = self._prompt | self.llm.bind(**params) | StrOutputParser()
        try:
            return await chain.ainvoke({"prompt": prompt})
        except Exception as exc:
            raise GenerationError(f"generation failed: {exc}") from exc


def should_use_enhanced_rag(
    model_id: str,
    reasoning: ReasoningOptions | None = None,
    disable_rag: bool = False,
) -> bool:
    """Enhance only when RAG is on, reasoning is opted into and the model can reason."""
    if disable_rag:
        return False
    if reasoning is None or not reasoning.enabled:
        return False
    return supports_reasoning(model_id)


def parse_understanding(text: str) -> QueryUnderstanding:
    """Parse generator output (optionally code-fenced JSON) into a validated model.

    Raises `ValueError` when the text is not JSON or misses required fields.
    """

    try:
        payload = parse_json_markdown(text.strip())
    except Exception as exc:
        raise ValueError(f"unparseable query analysis: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError("query analysis must be a JSON object")
    try:
        return QueryUnderstanding.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"invalid query analysis: {exc}") from exc


def build_grounded_prompt(base_prompt: str, context: str) -> str:
    """System prompt that restricts answer synthesis to retrieved context."""
    base = base_prompt.replace("{{context}}", "").strip()
    return _GROUNDED_PROMPT.format(context=context, base_prompt=base)


class QueryEnhancer:
    """Expands a query into concepts and alternative phrasings.

    Any generation, timeout or parse failure yields
    `QueryUnderstanding.fallback(query)`; enhancement never raises.
    """

    def __init__(self, generator: TextGenerator, config: EnhancerConfig | None = None) -> None:
        self.generator = generator
        self.config = config or EnhancerConfig()

    def build_prompt(self, query: str) -> str:
        return _ANALYSIS_PROMPT.format(query=query)

    async def enhance(
        self,
        query: str,
        model_id: str,
        reasoning: ReasoningOptions | None = None,
    ) -> QueryUnderstanding:
        reasoning = reasoning or ReasoningOptions(enabled=True)
        reasoning_config = build_reasoning_config(
            model_id,
            effort=reasoning.effort or self.config.default_effort,
            max_tokens=reasoning.max_tokens or self.config.default_reasoning_tokens,
        )
        try:
            text = await self._generate(query, model_id, reasoning_config)
            understanding = parse_understanding(text)
        except (GenerationError, SearchTimeoutError, ValueError) as exc:
            logger.warning("Query enhancement failed, using fallback: %s", exc)
            return QueryUnderstanding.fallback(query)
        except Exception as exc:
            logger.warning("Unexpected enhancement error, using fallback: %r", exc)
            return QueryUnderstanding.fallback(query)

        logger.info(
            "Query understanding: strategy=%s concepts=%s",
            understanding.search_strategy,
            understanding.key_concepts,
        )
        return understanding

    async def _generate(
        self, query: str, model_id: str, reasoning_config: dict[str, Any]
    ) -> str:
        try:
            return await asyncio.wait_for(
                self.generator.generate(
                    self.build_prompt(query),
                    model_id=model_id,
                    max_tokens=self.config.max_output_tokens,
                    temperature=self.config.temperature,
                    reasoning=reasoning_config,
                ),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise SearchTimeoutError(
                f"query analysis exceeded {self.config.timeout_seconds}s"
            ) from exc
