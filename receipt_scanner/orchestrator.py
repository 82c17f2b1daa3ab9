"""
Main Orchestrator for Receipt Scanner

This module ties the OCR core to its callers and defines the
end-to-end flows for:
1. Receipt scan (image → adaptive OCR → validate → sanitize → spotlight)
2. Batch scan (many images, bounded concurrency, partial success)
3. Save (client payload → sanitize → recurrence → persist)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing leaves a scan without passing the sanitization layer
- Nothing is persisted without an explicit save call
- Every step is audited under one correlation id

OCR output is proposed data. The caller reviews it, then calls
save_scanned_transaction() with whatever the user confirmed.
"""

from typing import Any, Optional
from uuid import UUID

import structlog

from receipt_scanner.audit import AuditLogger, configure_logging, create_correlation_id
from receipt_scanner.config import get_settings
from receipt_scanner.exceptions import (
    InvalidInputError,
    ModelInvocationError,
    ProcessingFailedError,
)
from receipt_scanner.models.receipt import (
    BatchResult,
    MetricsSnapshot,
    ProcessingOptions,
    ReceiptFile,
)
from receipt_scanner.models.transaction import ScannedReceipt, TransactionDraft
from receipt_scanner.services.ocr import AdaptiveOCRProcessor
from receipt_scanner.services.storage import (
    InMemoryAuditStorage,
    InMemoryTransactionStorage,
    StorageError,
    TransactionStorageInterface,
)
from receipt_scanner.validation import (
    calculate_next_recurring_date,
    sanitize_ocr_output,
    sanitize_transaction_input,
    with_ai_spotlight_metadata,
)


logger = structlog.get_logger(__name__)


class ReceiptScanFlow:
    """
    Orchestrates receipt scanning and saving.

    Flow:
    1. Receive → audit the upload
    2. Process → adaptive OCR (cache, routing, escalation, fallback)
    3. Sanitize → strip markup and injection phrases, clamp numbers
    4. Spotlight → tag which fields AI consumers may trust
    5. Review → returned to the caller (nothing is saved here)
    6. Save → separate call with the confirmed payload
    """

    def __init__(
        self,
        processor: Optional[AdaptiveOCRProcessor] = None,
        transaction_storage: Optional[TransactionStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._audit_logger = audit_logger
        self._processor = processor or AdaptiveOCRProcessor(audit_logger=audit_logger)
        self._transaction_storage = transaction_storage

    async def close(self) -> None:
        await self._processor.close()

    async def scan_receipt(
        self,
        content: bytes,
        mime_type: str,
        filename: str = "receipt",
        use_cache: bool = True,
        correlation_id: Optional[UUID] = None,
    ) -> ScannedReceipt:
        """
        Scan one receipt image.

        Returns:
            ScannedReceipt with sanitized fields and spotlight metadata

        Raises:
            InvalidInputError: The file was rejected before processing
            ProcessingFailedError: Neither adaptive nor fallback processing worked
        """
        correlation_id = correlation_id or create_correlation_id()
        file = ReceiptFile(content=content, mime_type=mime_type, name=filename)

        if self._audit_logger:
            await self._audit_logger.log_receipt_received(
                filename=filename,
                file_size=file.size,
                mime_type=file.mime_type,
                correlation_id=correlation_id,
            )

        try:
            result = await self._processor.process_receipt(
                file,
                ProcessingOptions(
                    use_cache=use_cache,
                    file_type=file.mime_type,
                    correlation_id=correlation_id,
                ),
            )
        except InvalidInputError as e:
            if self._audit_logger:
                await self._audit_logger.log_input_rejected(
                    filename=filename,
                    reason=str(e),
                    correlation_id=correlation_id,
                )
            raise
        except ProcessingFailedError as e:
            if self._audit_logger:
                if isinstance(e.cause, ModelInvocationError):
                    await self._audit_logger.log_external_service_error(
                        service="openrouter",
                        error_message=str(e.cause),
                        status_code=e.cause.status_code,
                        correlation_id=correlation_id,
                    )
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"filename": filename},
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            if result.analysis:
                await self._audit_logger.log_image_analyzed(
                    filename=filename,
                    summary=result.analysis.model_dump(mode="json"),
                    correlation_id=correlation_id,
                )
            if not result.validation.valid:
                await self._audit_logger.log_validation_failed(
                    filename=filename,
                    errors=result.validation.errors,
                    warnings=result.validation.warnings,
                    correlation_id=correlation_id,
                )
            await self._audit_logger.log_ocr_completed(
                filename=filename,
                strategy=result.strategy.value,
                model=result.model,
                confidence=result.confidence_score,
                processing_time_ms=result.processing_time_ms,
                correlation_id=correlation_id,
            )

        sanitized = sanitize_ocr_output(result, category=result.suggested_category)
        return with_ai_spotlight_metadata(
            sanitized,
            strategy=result.analysis.strategy if result.analysis else result.strategy,
            confidence=result.confidence_score,
            processing_time_ms=(
                result.analysis.processing_time_ms if result.analysis else result.processing_time_ms
            ),
            is_fallback=result.is_fallback,
            validation=result.validation,
        )

    async def scan_batch_receipts(
        self,
        files: list[ReceiptFile],
        max_concurrency: Optional[int] = None,
        use_cache: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> BatchResult:
        """Scan several receipts; max_concurrency defaults to the configured batch limit."""
        correlation_id = correlation_id or create_correlation_id()
        result = await self._processor.process_batch_receipts(
            files,
            ProcessingOptions(
                use_cache=use_cache,
                max_concurrency=max_concurrency or get_settings().ocr.batch_max_concurrency,
                correlation_id=correlation_id,
            ),
        )

        if self._audit_logger:
            await self._audit_logger.log_batch_completed(
                total=result.total,
                successful=len(result.successful),
                failed=len(result.failed),
                processing_time_ms=result.processing_time_ms,
                correlation_id=correlation_id,
            )
        return result

    def get_performance_metrics(self) -> MetricsSnapshot:
        """Processor metrics; a zeroed snapshot if they cannot be read."""
        try:
            return self._processor.get_metrics()
        except Exception as e:
            logger.error("metrics_unavailable", error=str(e))
            return MetricsSnapshot()

    async def save_scanned_transaction(
        self,
        data: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> tuple[str, TransactionDraft]:
        """
        Persist a reviewed transaction.

        The payload is sanitized again here, since it comes back from
        the client and may have been edited.

        Returns:
            (transaction_id, saved_draft)
        """
        if self._transaction_storage is None:
            raise StorageError("Transaction storage is not configured")

        correlation_id = correlation_id or create_correlation_id()
        draft = sanitize_transaction_input(data)

        if draft.is_recurring and draft.recurring_interval:
            draft = draft.model_copy(update={
                "next_recurring_date": calculate_next_recurring_date(
                    draft.date, draft.recurring_interval
                ),
            })

        try:
            transaction_id = await self._transaction_storage.save_transaction(draft)
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_transaction_saved(
                transaction_id=transaction_id,
                amount=draft.amount,
                category=draft.category,
                correlation_id=correlation_id,
            )
        return transaction_id, draft


def create_app_components(
    processor: Optional[AdaptiveOCRProcessor] = None,
) -> tuple[ReceiptScanFlow, InMemoryTransactionStorage, InMemoryAuditStorage]:
    """
    Factory function to create all application components.

    Storage is in-memory; a persistent backend implements the same
    storage interfaces and is passed to ReceiptScanFlow directly.

    Returns:
        (scan_flow, transaction_storage, audit_storage)
    """
    configure_logging(get_settings().app.log_level)

    transaction_storage = InMemoryTransactionStorage()
    audit_storage = InMemoryAuditStorage()
    audit_logger = AuditLogger(audit_storage)

    scan_flow = ReceiptScanFlow(
        processor=processor or AdaptiveOCRProcessor(audit_logger=audit_logger),
        transaction_storage=transaction_storage,
        audit_logger=audit_logger,
    )
    return scan_flow, transaction_storage, audit_storage
