"""
Data Models Package

This package contains all Pydantic models used by the receipt scanner.
All data flowing through the OCR pipeline must conform to these schemas.
"""

from receipt_scanner.models.receipt import (
    AnalysisSummary,
    BatchItemFailure,
    BatchItemSuccess,
    BatchResult,
    ComplexityLevel,
    ComplexityScore,
    ContentOrder,
    EnrichedResult,
    ImageAnalysis,
    LineAnalysis,
    MetricsSnapshot,
    ModelCandidate,
    ModelParams,
    OCRResult,
    ParsedReceipt,
    ProcessingOptions,
    ReceiptFile,
    ResultMetadata,
    SpacingAnalysis,
    Strategy,
    StrategyEntry,
    StrokeAnalysis,
    TextDensity,
    TransactionCategory,
    ValidationReport,
    VisionRequest,
    VisionResponse,
    utc_now,
)
from receipt_scanner.models.transaction import (
    RecurringInterval,
    SanitizedReceipt,
    ScannedReceipt,
    SpotlightMetadata,
    SpotlightPolicy,
    TransactionDraft,
    TransactionType,
)
from receipt_scanner.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Analysis models
    "ComplexityLevel",
    "ComplexityScore",
    "ImageAnalysis",
    "LineAnalysis",
    "SpacingAnalysis",
    "Strategy",
    "StrokeAnalysis",
    "TextDensity",
    # Registry / adapter models
    "ContentOrder",
    "ModelCandidate",
    "ModelParams",
    "StrategyEntry",
    "VisionRequest",
    "VisionResponse",
    # OCR result models
    "AnalysisSummary",
    "EnrichedResult",
    "OCRResult",
    "ParsedReceipt",
    "ResultMetadata",
    "TransactionCategory",
    "ValidationReport",
    # Processor models
    "BatchItemFailure",
    "BatchItemSuccess",
    "BatchResult",
    "MetricsSnapshot",
    "ProcessingOptions",
    "ReceiptFile",
    # Transaction models
    "RecurringInterval",
    "SanitizedReceipt",
    "ScannedReceipt",
    "SpotlightMetadata",
    "SpotlightPolicy",
    "TransactionDraft",
    "TransactionType",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    "utc_now",
]
