"""
Adaptive OCR Processor

Front door of the OCR core. Wraps the router with:

- Input pre-validation (size, MIME type, magic bytes)
- A bounded content-addressed result cache
- Business-rule post-processing (validation, category, blended confidence)
- A last-resort fallback path when the adaptive path fails
- Running metrics
- Bounded-concurrency batch processing

DESIGN DECISION: Rejected input (empty, oversized, wrong type) raises
InvalidInputError straight to the caller. Only failures AFTER the input
was accepted go through the fallback path; retrying a file we refused
would hide the rejection.
"""

import asyncio
import copy
import hashlib
import threading
import time
from collections import OrderedDict
from datetime import datetime
from typing import Optional

import structlog

from receipt_scanner.audit import AuditLogger
from receipt_scanner.config import OCRSettings, get_settings
from receipt_scanner.exceptions import InvalidInputError, ProcessingFailedError
from receipt_scanner.models.receipt import (
    BatchItemFailure,
    BatchItemSuccess,
    BatchResult,
    EnrichedResult,
    MetricsSnapshot,
    OCRResult,
    ProcessingOptions,
    ReceiptFile,
    ResultMetadata,
    Strategy,
    utc_now,
)
from receipt_scanner.services.ocr.enrichment import (
    calculate_overall_confidence,
    suggest_category,
)
from receipt_scanner.services.ocr.router import OCRRouter
from receipt_scanner.validation import ReceiptValidator


logger = structlog.get_logger(__name__)

# Leading bytes of the formats we expect to receive
IMAGE_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\xff\xd8\xff", "jpeg"),
    (b"\x89PNG", "png"),
    (b"RIFF", "webp"),
    (b"GIF8", "gif"),
    (b"BM", "bmp"),
)

SUCCESS_CONFIDENCE = 0.5


def detect_image_format(content: bytes) -> Optional[str]:
    for signature, name in IMAGE_SIGNATURES:
        if content.startswith(signature):
            return name
    return None


def generate_cache_key(content: bytes) -> str:
    """MD5 of the raw bytes. Used for deduplication, not security."""
    return hashlib.md5(content, usedforsecurity=False).hexdigest()


def _elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


# =============================================================================
# CACHE
# =============================================================================

class ResultCache:
    """
    Bounded insertion-ordered cache of enriched results.

    When full, the OLDEST inserted entry is evicted (FIFO, not LRU).
    Stored and returned values are deep copies so callers cannot mutate
    the cached result.
    """

    def __init__(self, max_size: int = 100):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._entries: OrderedDict[str, EnrichedResult] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[EnrichedResult]:
        with self._lock:
            value = self._entries.get(key)
        return copy.deepcopy(value) if value is not None else None

    def put(self, key: str, value: EnrichedResult) -> None:
        stored = copy.deepcopy(value)
        with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("cache_evicted", key=evicted)
            self._entries[key] = stored

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# METRICS
# =============================================================================

class ProcessingMetrics:
    """Running counters, updated incrementally after each processed receipt."""

    def __init__(self):
        self._lock = threading.Lock()
        self._reset_state()

    def _reset_state(self) -> None:
        self._total_processed = 0
        self._strategy_counts: dict[str, int] = {}
        self._average_time_ms = 0.0
        self._success_rate = 0.0
        self._last_reset: datetime = utc_now()
        self._reset_clock = time.monotonic()

    def record(self, strategy: str, processing_time_ms: float, success: bool) -> None:
        with self._lock:
            n = self._total_processed + 1
            self._strategy_counts[strategy] = self._strategy_counts.get(strategy, 0) + 1
            self._average_time_ms += (processing_time_ms - self._average_time_ms) / n
            self._success_rate += ((1.0 if success else 0.0) - self._success_rate) / n
            self._total_processed = n

    def reset(self) -> None:
        with self._lock:
            self._reset_state()

    def snapshot(self, cache_size: int = 0) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                total_processed=self._total_processed,
                strategy_counts=dict(self._strategy_counts),
                average_processing_time_ms=self._average_time_ms,
                success_rate=min(1.0, max(0.0, self._success_rate)),
                last_reset=self._last_reset,
                cache_size=cache_size,
                uptime_ms=int((time.monotonic() - self._reset_clock) * 1000),
            )


# =============================================================================
# PROCESSOR
# =============================================================================

class AdaptiveOCRProcessor:
    """
    Processes receipt files end to end.

    One instance is meant to be shared by the whole process so that the
    cache and metrics are shared too.
    """

    def __init__(
        self,
        router: Optional[OCRRouter] = None,
        validator: Optional[ReceiptValidator] = None,
        settings: Optional[OCRSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._settings = settings or get_settings().ocr
        self._audit_logger = audit_logger
        self._router = router or OCRRouter(audit_logger=audit_logger)
        self._validator = validator or ReceiptValidator()
        self._cache = ResultCache(self._settings.cache_max_size)
        self._metrics = ProcessingMetrics()

    async def close(self) -> None:
        await self._router.close()

    # =========================================================================
    # SINGLE RECEIPT
    # =========================================================================

    async def process_receipt(
        self,
        file: ReceiptFile,
        options: Optional[ProcessingOptions] = None,
    ) -> EnrichedResult:
        """
        Process one receipt image.

        Returns:
            EnrichedResult (possibly a degraded fallback result)

        Raises:
            InvalidInputError: Empty, oversized or unsupported file
            ProcessingFailedError: Both the adaptive and fallback paths failed
        """
        options = options or ProcessingOptions()
        start = time.perf_counter()

        if file.size == 0:
            raise InvalidInputError(f"File is empty: {file.name}", filename=file.name)

        cache_key = generate_cache_key(file.content)
        if options.use_cache:
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.info("cache_hit", file=file.name, key=cache_key)
                if self._audit_logger:
                    await self._audit_logger.log_cache_hit(cache_key, options.correlation_id)
                return cached

        self.validate_and_preprocess(file)

        try:
            ocr_result = await self._router.route(file.content, file.mime_type)
            enriched = self.post_process_result(ocr_result, file, options)
            cacheable = True
        except Exception as e:
            logger.warning(
                "adaptive_processing_failed",
                file=file.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            enriched = await self.fallback_processing(file, options, str(e))
            cacheable = False

        self._metrics.record(
            enriched.strategy.value,
            _elapsed_ms(start),
            enriched.confidence > SUCCESS_CONFIDENCE,
        )

        if options.use_cache and cacheable:
            self._cache.put(cache_key, enriched)

        return enriched

    def validate_and_preprocess(self, file: ReceiptFile) -> Optional[str]:
        """
        Check size and declared type; sniff the real format.

        Returns the detected format name, or None when the magic bytes
        are not recognized (logged, not rejected).
        """
        if file.size > self._settings.max_upload_size_bytes:
            raise InvalidInputError(
                f"File too large: {file.size} bytes "
                f"(max {self._settings.max_upload_size_mb}MB)",
                filename=file.name,
            )

        if file.mime_type not in self._settings.supported_mime_types_list:
            raise InvalidInputError(
                f"Unsupported file type: {file.mime_type}",
                filename=file.name,
            )

        detected = detect_image_format(file.content)
        if detected is None:
            logger.warning(
                "image_signature_mismatch",
                file=file.name,
                declared_type=file.mime_type,
            )
        return detected

    def post_process_result(
        self,
        result: OCRResult,
        file: ReceiptFile,
        options: ProcessingOptions,
    ) -> EnrichedResult:
        validation = self._validator.validate_extracted_data(result)
        if not validation.valid:
            logger.warning(
                "validation_failed",
                file=file.name,
                errors=validation.errors,
                warnings=validation.warnings,
            )

        return EnrichedResult(
            **result.model_dump(),
            processing_timestamp=utc_now(),
            validation=validation,
            metadata=ResultMetadata(
                file_type=options.file_type or file.mime_type or "unknown",
                is_batch=options.is_batch,
                batch_index=options.batch_index,
                processing_version=self._settings.processing_version,
            ),
            suggested_category=suggest_category(
                result.description, result.merchant_name, result.category
            ),
            confidence_score=calculate_overall_confidence(
                result.confidence, validation, result.strategy
            ),
        )

    async def fallback_processing(
        self,
        file: ReceiptFile,
        options: ProcessingOptions,
        reason: str,
    ) -> EnrichedResult:
        """Process with the fallback strategy and mark the result degraded."""
        try:
            result = await self._router.route_to_strategy(
                Strategy.FALLBACK, file.content, file.mime_type
            )
            result = result.model_copy(update={
                "is_fallback": True,
                "fallback_reason": reason,
                "confidence": self._settings.fallback_confidence,
            })
            enriched = self.post_process_result(result, file, options)
        except Exception as e:
            logger.error(
                "fallback_processing_failed",
                file=file.name,
                error=str(e),
                original_error=reason,
            )
            raise ProcessingFailedError(
                f"Both adaptive and fallback processing failed: {e}",
                cause=e,
            ) from e

        if self._audit_logger:
            await self._audit_logger.log_fallback_used(file.name, reason, options.correlation_id)
        return enriched

    # =========================================================================
    # BATCH
    # =========================================================================

    async def process_batch_receipts(
        self,
        files: list[ReceiptFile],
        options: Optional[ProcessingOptions] = None,
    ) -> BatchResult:
        """
        Process files in chunks of max_concurrency.

        Items of a chunk run concurrently; chunks run one after another.
        A failing item never aborts the batch.
        """
        options = options or ProcessingOptions(max_concurrency=self._settings.batch_max_concurrency)
        start = time.perf_counter()
        successful: list[BatchItemSuccess] = []
        failed: list[BatchItemFailure] = []

        size = options.max_concurrency
        for offset in range(0, len(files), size):
            chunk = files[offset:offset + size]
            outcomes = await asyncio.gather(*(
                self._process_batch_item(file, options, offset + i)
                for i, file in enumerate(chunk)
            ))
            for outcome in outcomes:
                if isinstance(outcome, BatchItemSuccess):
                    successful.append(outcome)
                else:
                    failed.append(outcome)

        total = len(files)
        result = BatchResult(
            successful=successful,
            failed=failed,
            total=total,
            success_rate=len(successful) / total if total else 0.0,
            processing_time_ms=_elapsed_ms(start),
        )
        logger.info(
            "batch_processed",
            total=total,
            successful=len(successful),
            failed=len(failed),
            processing_time_ms=result.processing_time_ms,
        )
        return result

    async def _process_batch_item(
        self,
        file: ReceiptFile,
        options: ProcessingOptions,
        index: int,
    ) -> BatchItemSuccess | BatchItemFailure:
        item_options = options.model_copy(update={"is_batch": True, "batch_index": index})
        try:
            result = await self.process_receipt(file, item_options)
        except Exception as e:
            logger.warning(
                "batch_item_failed",
                file=file.name,
                batch_index=index,
                error=str(e),
            )
            return BatchItemFailure(file=file.name, error=str(e), error_type=type(e).__name__)
        return BatchItemSuccess(file=file.name, result=result)

    # =========================================================================
    # METRICS / CACHE
    # =========================================================================

    def get_metrics(self) -> MetricsSnapshot:
        return self._metrics.snapshot(cache_size=len(self._cache))

    def reset_metrics(self) -> None:
        self._metrics.reset()

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)
