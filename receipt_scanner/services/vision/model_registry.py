"""
Model Registry

Static mapping from OCR strategy to a primary vision model plus ordered
escalation candidates. All models are served through OpenRouter.

DESIGN DECISION: Entries are data, not behavior. They are frozen pydantic
models shared read-only by every request, and a deployment can pass its own
mapping to ModelRegistry instead of editing this file.
"""

from types import MappingProxyType
from typing import Mapping, Optional, Union

from receipt_scanner.models.receipt import (
    ContentOrder,
    ModelCandidate,
    ModelParams,
    Strategy,
    StrategyEntry,
)


NEMOTRON_NANO_VL = "nvidia/nemotron-nano-12b-v2-vl:free"
GEMMA_3_27B = "google/gemma-3-27b-it:free"
QWEN_25_VL_32B = "qwen/qwen2.5-vl-32b-instruct:free"
GEMINI_20_FLASH = "google/gemini-2.0-flash-exp:free"


def _candidate(
    model_id: str,
    temperature: float,
    timeout_ms: int,
    content_order: Optional[ContentOrder] = None,
) -> ModelCandidate:
    return ModelCandidate(
        provider="openrouter",
        model_id=model_id,
        params=ModelParams(
            temperature=temperature,
            timeout_ms=timeout_ms,
            content_order=content_order,
        ),
    )


MODEL_REGISTRY: Mapping[Strategy, StrategyEntry] = MappingProxyType({
    Strategy.LIGHTWEIGHT: StrategyEntry(
        primary=_candidate(NEMOTRON_NANO_VL, 0.1, 20000, ContentOrder.IMAGE_FIRST),
        escalate=(
            _candidate(GEMMA_3_27B, 0.2, 25000, ContentOrder.TEXT_FIRST),
        ),
    ),
    Strategy.STANDARD: StrategyEntry(
        primary=_candidate(QWEN_25_VL_32B, 0.2, 25000),
        escalate=(
            _candidate(GEMINI_20_FLASH, 0.2, 30000),
        ),
    ),
    Strategy.HANDWRITING: StrategyEntry(
        primary=_candidate(GEMMA_3_27B, 0.35, 35000),
        escalate=(
            _candidate(QWEN_25_VL_32B, 0.35, 40000),
        ),
    ),
    Strategy.MIXED: StrategyEntry(
        primary=_candidate(QWEN_25_VL_32B, 0.25, 30000),
        escalate=(
            _candidate(GEMINI_20_FLASH, 0.3, 40000),
        ),
    ),
    Strategy.BATCH: StrategyEntry(
        primary=_candidate(QWEN_25_VL_32B, 0.2, 35000),
        escalate=(
            _candidate(GEMINI_20_FLASH, 0.25, 45000),
        ),
    ),
    Strategy.FALLBACK: StrategyEntry(
        primary=_candidate(GEMINI_20_FLASH, 0.3, 45000),
        escalate=(),
    ),
})


class ModelRegistry:
    """Pure lookup from strategy to StrategyEntry."""

    def __init__(self, entries: Optional[Mapping[Strategy, StrategyEntry]] = None):
        entries = dict(entries if entries is not None else MODEL_REGISTRY)
        if Strategy.FALLBACK not in entries:
            raise ValueError("Model registry needs a fallback entry")
        self._entries: Mapping[Strategy, StrategyEntry] = MappingProxyType(entries)

    def resolve(self, strategy: Union[Strategy, str, None]) -> StrategyEntry:
        """Unknown or missing strategies resolve to the fallback entry."""
        try:
            key = Strategy(strategy)
        except ValueError:
            return self._entries[Strategy.FALLBACK]
        return self._entries.get(key, self._entries[Strategy.FALLBACK])

    @property
    def strategies(self) -> list[Strategy]:
        return list(self._entries)


def resolve_model_for_strategy(strategy: Union[Strategy, str, None]) -> StrategyEntry:
    """Resolve against the built-in registry."""
    return _DEFAULT_REGISTRY.resolve(strategy)


_DEFAULT_REGISTRY = ModelRegistry()
