"""
Audit Logger

DESIGN DECISION: Every significant step of a receipt scan is logged.
This provides:
1. Traceability from upload to stored transaction
2. Debugging capability when a model or strategy misbehaves
3. A per-scan history tied together by a correlation id

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash a scan if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from receipt_scanner.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from receipt_scanner.services.storage.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route the stdlib root logger (structlog's backend) to stderr at `level`."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit store (for persistence), when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_receipt_received(
        self,
        filename: str,
        file_size: int,
        mime_type: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_received(
            filename=filename,
            file_size=file_size,
            mime_type=mime_type,
            correlation_id=correlation_id,
        ))

    async def log_input_rejected(
        self,
        filename: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.input_rejected(
            filename=filename,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_cache_hit(
        self,
        content_hash: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.cache_hit(
            content_hash=content_hash,
            correlation_id=correlation_id,
        ))

    async def log_image_analyzed(
        self,
        filename: str,
        summary: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.image_analyzed(
            filename=filename,
            summary=summary,
            correlation_id=correlation_id,
        ))

    async def log_model_escalated(
        self,
        strategy: str,
        from_model: str,
        to_model: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.model_escalated(
            strategy=strategy,
            from_model=from_model,
            to_model=to_model,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_ocr_completed(
        self,
        filename: str,
        strategy: str,
        model: str,
        confidence: float,
        processing_time_ms: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log OCR completion."""
        await self.log(AuditEventBuilder.ocr_completed(
            filename=filename,
            strategy=strategy,
            model=model,
            confidence=confidence,
            processing_time_ms=processing_time_ms,
            correlation_id=correlation_id,
        ))

    async def log_fallback_used(
        self,
        filename: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.fallback_used(
            filename=filename,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        filename: str,
        errors: list[str],
        warnings: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log validation failure."""
        await self.log(AuditEventBuilder.validation_failed(
            filename=filename,
            errors=errors,
            warnings=warnings,
            correlation_id=correlation_id,
        ))

    async def log_batch_completed(
        self,
        total: int,
        successful: int,
        failed: int,
        processing_time_ms: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.batch_completed(
            total=total,
            successful=successful,
            failed=failed,
            processing_time_ms=processing_time_ms,
            correlation_id=correlation_id,
        ))

    async def log_transaction_saved(
        self,
        transaction_id: str,
        amount: float,
        category: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log transaction save."""
        await self.log(AuditEventBuilder.transaction_saved(
            transaction_id=transaction_id,
            amount=amount,
            category=category,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        status_code: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            status_code=status_code,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a receipt scan.
    Pass it through all subsequent operations.
    """
    return uuid4()
