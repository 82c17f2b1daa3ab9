"""Vision model services package."""

from receipt_scanner.services.vision.interface import VisionModelAdapter
from receipt_scanner.services.vision.model_registry import (
    MODEL_REGISTRY,
    ModelRegistry,
    resolve_model_for_strategy,
)
from receipt_scanner.services.vision.openrouter import OpenRouterVisionAdapter

__all__ = [
    "MODEL_REGISTRY",
    "ModelRegistry",
    "OpenRouterVisionAdapter",
    "VisionModelAdapter",
    "resolve_model_for_strategy",
]
