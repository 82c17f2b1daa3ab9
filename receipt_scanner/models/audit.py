"""
Audit Models for the Receipt Scanner

Every significant step of a receipt scan is logged for audit purposes.
This provides:
1. Traceability from upload to stored transaction
2. Debugging information when a model misbehaves
3. A record of which model and strategy produced each number

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from receipt_scanner.models.receipt import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step in the scan pipeline has its own event type.
    """
    # Intake
    RECEIPT_RECEIVED = "receipt_received"
    INPUT_REJECTED = "input_rejected"
    CACHE_HIT = "cache_hit"

    # Analysis and routing
    IMAGE_ANALYZED = "image_analyzed"
    MODEL_ESCALATED = "model_escalated"

    # OCR
    OCR_COMPLETED = "ocr_completed"
    FALLBACK_USED = "fallback_used"
    VALIDATION_FAILED = "validation_failed"
    BATCH_COMPLETED = "batch_completed"

    # Persistence
    TRANSACTION_SAVED = "transaction_saved"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'receipt', 'batch', 'transaction')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity (file name, content hash, transaction id)"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate all events of one scan"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.receipt_received(name, size, mime, cid)
        event = AuditEventBuilder.fallback_used(name, reason, cid)
    """

    @staticmethod
    def receipt_received(
        filename: str,
        file_size: int,
        mime_type: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_RECEIVED,
            entity_type="receipt",
            entity_id=filename,
            correlation_id=correlation_id,
            description=f"Receipt received: {filename}",
            details={
                "file_size_bytes": file_size,
                "mime_type": mime_type,
            },
        )

    @staticmethod
    def input_rejected(
        filename: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INPUT_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="receipt",
            entity_id=filename,
            correlation_id=correlation_id,
            description=f"Receipt rejected: {filename}",
            error_message=reason,
        )

    @staticmethod
    def cache_hit(
        content_hash: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CACHE_HIT,
            severity=AuditSeverity.DEBUG,
            entity_type="receipt",
            entity_id=content_hash,
            correlation_id=correlation_id,
            description="Returned cached OCR result",
        )

    @staticmethod
    def image_analyzed(
        filename: str,
        summary: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMAGE_ANALYZED,
            entity_type="receipt",
            entity_id=filename,
            correlation_id=correlation_id,
            description=f"Image analyzed: strategy {summary.get('strategy')}",
            details=summary,
        )

    @staticmethod
    def model_escalated(
        strategy: str,
        from_model: str,
        to_model: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MODEL_ESCALATED,
            severity=AuditSeverity.WARNING,
            entity_type="model",
            entity_id=to_model,
            correlation_id=correlation_id,
            description=f"Escalated {strategy} from {from_model} to {to_model}",
            details={
                "strategy": strategy,
                "from_model": from_model,
                "to_model": to_model,
                "reason": reason,
            },
        )

    @staticmethod
    def ocr_completed(
        filename: str,
        strategy: str,
        model: str,
        confidence: float,
        processing_time_ms: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCR_COMPLETED,
            entity_type="receipt",
            entity_id=filename,
            correlation_id=correlation_id,
            description=f"OCR completed with {confidence:.0%} confidence",
            details={
                "strategy": strategy,
                "model": model,
                "confidence_score": confidence,
                "processing_time_ms": processing_time_ms,
            },
        )

    @staticmethod
    def fallback_used(
        filename: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FALLBACK_USED,
            severity=AuditSeverity.WARNING,
            entity_type="receipt",
            entity_id=filename,
            correlation_id=correlation_id,
            description="Adaptive processing failed, fallback strategy used",
            error_message=reason,
        )

    @staticmethod
    def validation_failed(
        filename: str,
        errors: list[str],
        warnings: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="receipt",
            entity_id=filename,
            correlation_id=correlation_id,
            description=f"Validation failed with {len(errors)} errors",
            details={
                "errors": errors,
                "warnings": warnings,
            },
        )

    @staticmethod
    def batch_completed(
        total: int,
        successful: int,
        failed: int,
        processing_time_ms: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BATCH_COMPLETED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            entity_type="batch",
            correlation_id=correlation_id,
            description=f"Batch completed: {successful}/{total} successful",
            details={
                "total": total,
                "successful": successful,
                "failed": failed,
                "processing_time_ms": processing_time_ms,
            },
        )

    @staticmethod
    def transaction_saved(
        transaction_id: str,
        amount: float,
        category: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_SAVED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction saved: {amount:.2f} ({category})",
            details={
                "amount": amount,
                "category": category,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_code=error_type,
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        status_code: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
                "status_code": status_code,
            },
            correlation_id=correlation_id,
        )
