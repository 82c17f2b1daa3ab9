"""
Shared fixtures.

No real API calls in tests: vision models are replaced by a scripted
adapter and images are generated in memory with numpy + Pillow.
"""

import json
from io import BytesIO
from typing import Optional, Union

import numpy as np
import pytest
from PIL import Image

from receipt_scanner.config import AnalyzerSettings, OCRSettings
from receipt_scanner.models.receipt import (
    ComplexityLevel,
    ComplexityScore,
    ImageAnalysis,
    LineAnalysis,
    SpacingAnalysis,
    Strategy,
    StrokeAnalysis,
    TextDensity,
    VisionRequest,
    VisionResponse,
)
from receipt_scanner.services.analysis import ImageAnalyzer
from receipt_scanner.services.vision import VisionModelAdapter


RECEIPT_JSON = json.dumps({
    "amount": 42.5,
    "date": "2024-03-01",
    "description": "Coffee and bagel",
    "merchantName": "Corner Cafe",
    "category": "food",
    "confidence": 0.9,
})


def png_bytes(pixels: np.ndarray) -> bytes:
    """Encode a 2D uint8 grayscale array as PNG."""
    buffer = BytesIO()
    Image.fromarray(pixels.astype(np.uint8)).save(buffer, format="PNG")
    return buffer.getvalue()


def receipt_json(**overrides) -> str:
    data = json.loads(RECEIPT_JSON)
    data.update(overrides)
    return json.dumps(data)


class StubVisionAdapter(VisionModelAdapter):
    """
    Scripted vision adapter.

    `responses` maps a model id to a queue of outcomes; each outcome is
    response text or an exception to raise. Models without a queued
    outcome answer with `default`.
    """

    def __init__(
        self,
        responses: Optional[dict[str, list[Union[str, Exception]]]] = None,
        default: Union[str, Exception] = RECEIPT_JSON,
    ):
        self.responses = {k: list(v) for k, v in (responses or {}).items()}
        self.default = default
        self.calls: list[VisionRequest] = []
        self.closed = False

    async def invoke(self, request: VisionRequest) -> VisionResponse:
        self.calls.append(request)
        queue = self.responses.get(request.model_id)
        outcome = queue.pop(0) if queue else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return VisionResponse(text=outcome, model=request.model_id)

    async def close(self) -> None:
        self.closed = True

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def models_called(self) -> list[str]:
        return [call.model_id for call in self.calls]


class FixedStrategyAnalyzer(ImageAnalyzer):
    """Analyzer that always recommends the same strategy."""

    def __init__(self, strategy: Strategy):
        super().__init__(settings=AnalyzerSettings())
        self.strategy = strategy
        self.calls = 0

    def analyze(self, image_bytes: bytes) -> ImageAnalysis:
        self.calls += 1
        return make_analysis(self.strategy)


def make_analysis(strategy: Strategy, confidence: float = 0.9) -> ImageAnalysis:
    return ImageAnalysis(
        text_density=TextDensity(density=0.2),
        line_analysis=LineAnalysis(is_consistent=True, line_count=8),
        spacing_analysis=SpacingAnalysis(uniform=True),
        stroke_analysis=StrokeAnalysis(consistent=True),
        complexity_score=ComplexityScore(complexity=ComplexityLevel.LOW),
        recommended_strategy=strategy,
        confidence=confidence,
    )


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def analyzer_settings():
    return AnalyzerSettings()


@pytest.fixture
def ocr_settings():
    return OCRSettings()


@pytest.fixture
def blank_png():
    """White 800x600 page."""
    return png_bytes(np.full((600, 800), 255, dtype=np.uint8))


@pytest.fixture
def black_png():
    return png_bytes(np.zeros((100, 100), dtype=np.uint8))


@pytest.fixture
def checkerboard_png():
    """1px black/white checkerboard: maximal edge density."""
    y, x = np.indices((100, 100))
    return png_bytes(np.where((x + y) % 2 == 0, 0, 255))


@pytest.fixture
def printed_receipt_png():
    """White 400x300 page with 8 evenly spaced lines of block characters."""
    pixels = np.full((300, 400), 255, dtype=np.uint8)
    for line in range(8):
        top = 20 + line * 30
        for char in range(25):
            left = 20 + char * 12
            pixels[top:top + 9, left:left + 6] = 0
    return png_bytes(pixels)


@pytest.fixture
def stub_adapter():
    return StubVisionAdapter()
