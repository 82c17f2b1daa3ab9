"""
Core Data Models for the Receipt Scanner

These models define the strict schemas for all data flowing through the
OCR pipeline:

    raw upload -> ImageAnalysis -> StrategyEntry -> VisionResponse
               -> ParsedReceipt -> OCRResult -> EnrichedResult

They are designed to:
1. Enforce the numeric invariants at runtime (confidence in [0, 1], amount >= 0)
2. Provide clear validation error messages
3. Be serializable for caching and logging

DESIGN DECISION: Analysis results and registry entries are frozen.
They are produced once and shared, so nothing downstream may mutate them.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Timezone-aware current time; every timestamp in the pipeline is UTC."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Strategy(str, Enum):
    """
    OCR processing modes.

    Each strategy is bound to a prompt template and a model chain.
    """
    LIGHTWEIGHT = "lightweight"  # Sparse, clean printed text
    STANDARD = "standard"        # Regular printed receipt
    HANDWRITING = "handwriting"  # Irregular lines/spacing/strokes
    BATCH = "batch"              # Dense and busy: likely several receipts
    MIXED = "mixed"              # Printed and handwritten together
    FALLBACK = "fallback"        # Last resort, most capable model


class ComplexityLevel(str, Enum):
    """Edge-density classification of an image."""
    LOW = "low"
    HIGH = "high"


class ContentOrder(str, Enum):
    """Order of the image and text parts in the multimodal user message."""
    IMAGE_FIRST = "image-first"
    TEXT_FIRST = "text-first"


class TransactionCategory(str, Enum):
    """
    Categories a scanned receipt can be filed under.

    DESIGN DECISION: Using explicit categories rather than free text ensures
    consistent categorization, and it means model output can never smuggle
    arbitrary strings into the category column.
    """
    HOUSING = "housing"
    TRANSPORTATION = "transportation"
    GROCERIES = "groceries"
    UTILITIES = "utilities"
    ENTERTAINMENT = "entertainment"
    FOOD = "food"
    SHOPPING = "shopping"
    HEALTHCARE = "healthcare"
    EDUCATION = "education"
    PERSONAL = "personal"
    TRAVEL = "travel"
    INSURANCE = "insurance"
    GIFTS = "gifts"
    BILLS = "bills"
    OTHER_EXPENSE = "other-expense"

    @classmethod
    def coerce(cls, value: Any) -> "TransactionCategory":
        """Map any value onto the allowed set, defaulting to OTHER_EXPENSE."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.OTHER_EXPENSE


# =============================================================================
# IMAGE ANALYSIS
# =============================================================================

class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class TextDensity(_FrozenModel):
    """Share of dark ("text") pixels in the image."""

    density: float = Field(ge=0.0, le=1.0)
    text_pixel_count: int = Field(default=0, ge=0)
    total_pixels: int = Field(default=0, ge=0)


class LineAnalysis(_FrozenModel):
    """Regularity of horizontal text lines."""

    is_consistent: bool
    line_count: int = Field(default=0, ge=0)


class SpacingAnalysis(_FrozenModel):
    """Uniformity of gaps between horizontal text runs."""

    uniform: bool
    coefficient_of_variation: float = 0.0
    average_spacing: float = 0.0
    gap_count: int = Field(default=0, ge=0)


class StrokeAnalysis(_FrozenModel):
    """Share of sampled regions whose ink density looks like regular text."""

    consistent: bool
    consistency_ratio: float = Field(default=0.0, ge=0.0, le=1.0)
    uniform_regions: int = Field(default=0, ge=0)
    total_regions: int = Field(default=0, ge=0)


class ComplexityScore(_FrozenModel):
    """Gradient edge density of the image."""

    complexity: ComplexityLevel
    edge_density: float = Field(default=0.0, ge=0.0, le=1.0)
    edge_count: int = Field(default=0, ge=0)


class ImageAnalysis(_FrozenModel):
    """
    Result of analyzing one image.

    Created fresh per image and consumed synchronously by the router.
    Never persisted.
    """

    text_density: TextDensity
    line_analysis: LineAnalysis
    spacing_analysis: SpacingAnalysis
    stroke_analysis: StrokeAnalysis
    complexity_score: ComplexityScore

    recommended_strategy: Strategy
    confidence: float = Field(ge=0.0, le=1.0)

    is_fallback: bool = False
    fallback_reason: Optional[str] = None

    width: Optional[int] = None
    height: Optional[int] = None
    analyzed_at: datetime = Field(default_factory=utc_now)

    def summary(self) -> dict[str, Any]:
        """Compact view used for logs and prompt context."""
        return {
            "strategy": self.recommended_strategy.value,
            "confidence": round(self.confidence, 3),
            "text_density": round(self.text_density.density, 4),
            "complexity": self.complexity_score.complexity.value,
            "is_fallback": self.is_fallback,
        }


# =============================================================================
# MODEL REGISTRY
# =============================================================================

class ModelParams(_FrozenModel):
    """Invocation parameters for one vision model."""

    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    timeout_ms: int = Field(default=30000, gt=0)
    content_order: Optional[ContentOrder] = None


class ModelCandidate(_FrozenModel):
    """One externally hosted vision model."""

    provider: str = "openrouter"
    model_id: str = Field(min_length=1)
    params: ModelParams = Field(default_factory=ModelParams)


class StrategyEntry(_FrozenModel):
    """Primary model plus ordered escalation candidates for a strategy."""

    primary: ModelCandidate
    escalate: tuple[ModelCandidate, ...] = ()


# =============================================================================
# VISION ADAPTER CONTRACT
# =============================================================================

class VisionRequest(BaseModel):
    """Single multimodal chat completion request."""

    model_id: str
    image_bytes: bytes = Field(repr=False)
    mime_type: str = "image/jpeg"
    prompt: str
    temperature: float = 0.2
    timeout_ms: int = Field(default=30000, gt=0)
    content_order: Optional[ContentOrder] = None
    top_p: Optional[float] = None
    stop: Optional[list[str]] = None

    @classmethod
    def for_candidate(
        cls,
        candidate: ModelCandidate,
        image_bytes: bytes,
        mime_type: str,
        prompt: str,
    ) -> "VisionRequest":
        return cls(
            model_id=candidate.model_id,
            image_bytes=image_bytes,
            mime_type=mime_type,
            prompt=prompt,
            temperature=candidate.params.temperature,
            timeout_ms=candidate.params.timeout_ms,
            content_order=candidate.params.content_order,
        )


class VisionResponse(BaseModel):
    """Normalized model output."""

    text: str = ""
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)
    model: str


# =============================================================================
# OCR RESULTS
# =============================================================================

class ParsedReceipt(BaseModel):
    """
    Fields recovered from a model response.

    CRITICAL: This is PROPOSED data, NOT verified.
    Defaults are filled in for anything the model did not provide.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: float = Field(default=0.0, ge=0.0)
    date: datetime = Field(default_factory=utc_now)
    description: str = "Receipt scan"
    category: TransactionCategory = TransactionCategory.OTHER_EXPENSE
    merchant_name: str = "Unknown Merchant"
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    strategy: Strategy
    raw_response: str = Field(default="", repr=False)

    # Set when the response was not JSON and fields came from regexes
    note: Optional[str] = None

    # Strategy-specific extras (handwriting notes, receipt count, ...)
    extras: dict[str, Any] = Field(default_factory=dict)

    @field_validator("amount", mode="before")
    @classmethod
    def non_finite_amount_is_zero(cls, v: Any) -> Any:
        if isinstance(v, float) and not math.isfinite(v):
            return 0.0
        return v


class AnalysisSummary(BaseModel):
    """What the router decided, attached to every result."""

    strategy: Strategy
    confidence: float = Field(ge=0.0, le=1.0)
    processing_time_ms: int = Field(default=0, ge=0)


class OCRResult(ParsedReceipt):
    """Router output for one image."""

    model: str
    processing_time_ms: int = Field(default=0, ge=0)
    model_time_ms: int = Field(default=0, ge=0)
    use_case: Optional[str] = None
    analysis: Optional[AnalysisSummary] = None

    is_fallback: bool = False
    fallback_reason: Optional[str] = None


class ValidationReport(BaseModel):
    """
    Business validation of extracted fields.

    Errors flag the result as invalid; warnings never do.
    Best-effort data is returned either way.
    """

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ResultMetadata(BaseModel):
    """Processing context stamped onto enriched results."""

    file_type: str = "unknown"
    is_batch: bool = False
    batch_index: Optional[int] = None
    processing_version: str = "1.0.0"


class EnrichedResult(OCRResult):
    """Externally visible result of the adaptive processor."""

    processing_timestamp: datetime = Field(default_factory=utc_now)
    validation: ValidationReport
    metadata: ResultMetadata = Field(default_factory=ResultMetadata)
    suggested_category: TransactionCategory = TransactionCategory.OTHER_EXPENSE
    confidence_score: float = Field(ge=0.0, le=1.0)


# =============================================================================
# PROCESSOR INPUT / OUTPUT
# =============================================================================

class ReceiptFile(BaseModel):
    """An uploaded receipt image."""

    content: bytes = Field(repr=False)
    mime_type: str = "image/jpeg"
    name: str = "receipt"

    @field_validator("mime_type")
    @classmethod
    def normalize_mime_type(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def size(self) -> int:
        return len(self.content)


class ProcessingOptions(BaseModel):
    """Per-call switches for the adaptive processor."""

    use_cache: bool = False
    max_concurrency: int = Field(default=3, ge=1)
    is_batch: bool = False
    batch_index: Optional[int] = None
    file_type: Optional[str] = None
    correlation_id: Optional[UUID] = None


class BatchItemSuccess(BaseModel):
    file: str
    result: EnrichedResult


class BatchItemFailure(BaseModel):
    file: str
    error: str
    error_type: str = "Exception"


class BatchResult(BaseModel):
    """Outcome of a batch; partial success is the normal case."""

    successful: list[BatchItemSuccess] = Field(default_factory=list)
    failed: list[BatchItemFailure] = Field(default_factory=list)
    total: int = Field(ge=0)
    success_rate: float = Field(ge=0.0, le=1.0)
    processing_time_ms: int = Field(default=0, ge=0)


class MetricsSnapshot(BaseModel):
    """Point-in-time copy of the processor's running metrics."""

    total_processed: int = 0
    strategy_counts: dict[str, int] = Field(default_factory=dict)
    average_processing_time_ms: float = 0.0
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    last_reset: datetime = Field(default_factory=utc_now)
    cache_size: int = 0
    uptime_ms: int = 0
