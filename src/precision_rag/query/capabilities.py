"""Reasoning support per model identifier."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

logger = logging.getLogger(__name__)

ReasoningMethod = Literal["effort", "max_tokens", "both", "none"]
ReasoningEffort = Literal["low", "medium", "high"]

_DEFAULT_BUDGET = 2000


@dataclass(frozen=True, slots=True)
class ReasoningCapability:
    supported: bool
    method: ReasoningMethod
    default_effort: ReasoningEffort | None = None
    max_tokens_limit: int | None = None
    min_tokens: int | None = None


def _effort(default: ReasoningEffort) -> ReasoningCapability:
    return ReasoningCapability(True, "effort", default_effort=default)


def _budget(limit: int, minimum: int) -> ReasoningCapability:
    return ReasoningCapability(True, "max_tokens", max_tokens_limit=limit, min_tokens=minimum)


def _effort_and_budget(default: ReasoningEffort, limit: int) -> ReasoningCapability:
    # These models take an effort level and a token budget in the same call.
    return ReasoningCapability(True, "both", default_effort=default, max_tokens_limit=limit)


UNSUPPORTED = ReasoningCapability(False, "none")

REASONING_MODELS: dict[str, ReasoningCapability] = {
    "openai/o1": _effort("medium"),
    "openai/o1-preview": _effort("medium"),
    "openai/o1-mini": _effort("low"),
    "openai/o3": _effort("high"),
    "openai/o3-mini": _effort("medium"),
    "openai/o4": _effort("high"),
    "openai/o4-mini": _effort("medium"),
    "openai/gpt-5": _effort("high"),
    "openai/gpt-5-mini": _effort("medium"),
    "openai/gpt-oss-120b": _budget(26000, 1300),
    "openai/gpt-oss-20b": _budget(16000, 1000),
    "anthropic/claude-3.7-sonnet": _budget(32000, 1000),
    "anthropic/claude-3.7-opus": _budget(32000, 1000),
    "anthropic/claude-3.7-haiku": _budget(16000, 500),
    "anthropic/claude-3.8-sonnet": _budget(32000, 1000),
    "anthropic/claude-3.8-opus": _budget(32000, 1000),
    "anthropic/claude-sonnet-4": _budget(32000, 1000),
    "anthropic/claude-sonnet-4.5": _budget(32000, 1000),
    "anthropic/claude-opus-4.1": _budget(32000, 1000),
    "deepseek/deepseek-r1": _effort_and_budget("medium", 16000),
    "deepseek/deepseek-r1-0528": _effort_and_budget("medium", 16000),
    "deepseek/deepseek-r1-distill": _effort_and_budget("low", 8000),
    "deepseek/deepseek-r1-distill-0528": _effort_and_budget("low", 8000),
    "google/gemini-2.0-flash-thinking-exp": _budget(16000, 1000),
    "google/gemini-2.0-flash-thinking": _budget(20000, 1000),
    "google/gemini-2.0-pro-thinking": _budget(30000, 1500),
    "google/gemini-2.5-pro-preview": _budget(32000, 1000),
    "google/gemini-2.5-pro-thinking": _budget(32000, 2000),
    "z-ai/glm-4.5": _budget(16000, 1000),
    "z-ai/glm-4.5-air": _budget(16000, 1000),
}


def get_capability(model_id: str) -> ReasoningCapability:
    return REASONING_MODELS.get(model_id, UNSUPPORTED)


def matches_reasoning_pattern(model_id: str) -> bool:
    """Name heuristics for models missing from `REASONING_MODELS`."""
    name = model_id.lower()
    if any(marker in name for marker in ("o1", "o3", "o4", "deepseek-r1")):
        return True
    if any(marker in name for marker in ("claude-3.7", "claude-3.8", "claude-sonnet-4")):
        return True
    if "claude" in name and "sonnet" in name and "4" in name:
        return True
    return "gemini" in name and "thinking" in name


def supports_reasoning(model_id: str) -> bool:
    if get_capability(model_id).supported:
        return True
    matched = matches_reasoning_pattern(model_id)
    logger.debug("Reasoning pattern match for %s: %s", model_id, matched)
    return matched


def build_reasoning_config(
    model_id: str,
    effort: str | None = None,
    max_tokens: int | None = None,
) -> dict[str, Any]:
    """Per-call reasoning parameters for `model_id`; empty when unsupported.

    Effort defaults to "low"; the token budget is the requested budget (2000
    when unset) clamped to the model's limit.
    """

    capability = get_capability(model_id)
    if not capability.supported:
        return {}

    config: dict[str, Any] = {"enabled": True}
    if capability.method in ("effort", "both"):
        config["effort"] = effort or "low"
    if capability.method in ("max_tokens", "both"):
        config["max_tokens"] = min(
            max_tokens or _DEFAULT_BUDGET, capability.max_tokens_limit or _DEFAULT_BUDGET
        )
    return config
