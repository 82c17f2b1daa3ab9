"""Tests for the strategy -> model registry."""

import pytest

from receipt_scanner.models.receipt import ContentOrder, Strategy, StrategyEntry
from receipt_scanner.services.vision import MODEL_REGISTRY, ModelRegistry, resolve_model_for_strategy
from receipt_scanner.services.vision.model_registry import (
    GEMINI_20_FLASH,
    GEMMA_3_27B,
    NEMOTRON_NANO_VL,
    QWEN_25_VL_32B,
)


class TestModelRegistry:
    """Lookup behavior and shipped entries."""

    def test_every_strategy_has_an_entry(self):
        """All six strategies are configured."""
        assert set(MODEL_REGISTRY) == set(Strategy)

    def test_lightweight_entry(self):
        """Lightweight starts on the small model and escalates to Gemma."""
        entry = resolve_model_for_strategy(Strategy.LIGHTWEIGHT)

        assert entry.primary.model_id == NEMOTRON_NANO_VL
        assert entry.primary.params.temperature == 0.1
        assert entry.primary.params.timeout_ms == 20000
        assert entry.primary.params.content_order == ContentOrder.IMAGE_FIRST
        assert [c.model_id for c in entry.escalate] == [GEMMA_3_27B]

    def test_handwriting_escalates_to_qwen(self):
        """Handwriting uses Gemma first."""
        entry = resolve_model_for_strategy(Strategy.HANDWRITING)
        assert entry.primary.model_id == GEMMA_3_27B
        assert entry.escalate[0].model_id == QWEN_25_VL_32B

    def test_fallback_has_no_escalation(self):
        """The fallback entry is the end of the line."""
        entry = resolve_model_for_strategy(Strategy.FALLBACK)
        assert entry.primary.model_id == GEMINI_20_FLASH
        assert entry.escalate == ()

    @pytest.mark.parametrize("strategy", [None, "unknown", "HANDWRITING"])
    def test_unknown_strategy_resolves_to_fallback(self, strategy):
        """Anything that is not a strategy value gets the fallback entry."""
        assert resolve_model_for_strategy(strategy) == MODEL_REGISTRY[Strategy.FALLBACK]

    def test_string_values_resolve(self):
        """Strategy values are accepted as plain strings."""
        assert resolve_model_for_strategy("standard") == MODEL_REGISTRY[Strategy.STANDARD]

    def test_registry_is_read_only(self):
        """The shipped mapping cannot be mutated."""
        with pytest.raises(TypeError):
            MODEL_REGISTRY[Strategy.STANDARD] = MODEL_REGISTRY[Strategy.FALLBACK]

    def test_custom_registry_requires_fallback(self):
        """A registry without a fallback entry is rejected."""
        with pytest.raises(ValueError):
            ModelRegistry({Strategy.STANDARD: MODEL_REGISTRY[Strategy.STANDARD]})

    def test_custom_registry_missing_strategy_uses_fallback(self):
        """Strategies absent from a custom mapping resolve to its fallback."""
        fallback = StrategyEntry(primary=MODEL_REGISTRY[Strategy.STANDARD].primary)
        registry = ModelRegistry({Strategy.FALLBACK: fallback})

        assert registry.resolve(Strategy.BATCH) == fallback
        assert registry.strategies == [Strategy.FALLBACK]
