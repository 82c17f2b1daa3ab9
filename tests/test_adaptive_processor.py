"""
Tests for the adaptive processor: cache, fallback, metrics and batches.
"""

import asyncio

import pytest

from receipt_scanner.audit import AuditLogger
from receipt_scanner.config import OCRSettings
from receipt_scanner.exceptions import InvalidInputError, ModelInvocationError, ProcessingFailedError
from receipt_scanner.models.audit import AuditEventType
from receipt_scanner.models.receipt import (
    EnrichedResult,
    ProcessingOptions,
    ReceiptFile,
    Strategy,
    TransactionCategory,
    ValidationReport,
)
from receipt_scanner.services.ocr import (
    AdaptiveOCRProcessor,
    OCRRouter,
    ResultCache,
    detect_image_format,
    generate_cache_key,
)
from receipt_scanner.services.storage import InMemoryAuditStorage
from receipt_scanner.services.vision.model_registry import (
    GEMINI_20_FLASH,
    GEMMA_3_27B,
    NEMOTRON_NANO_VL,
)

from conftest import FixedStrategyAnalyzer, StubVisionAdapter, receipt_json


def jpeg(tag: int = 0) -> ReceiptFile:
    return ReceiptFile(
        content=b"\xff\xd8\xff\xe0" + bytes([tag]) * 64,
        mime_type="image/jpeg",
        name=f"receipt-{tag}.jpg",
    )


def make_processor(adapter, strategy=Strategy.STANDARD, settings=None, audit_logger=None):
    router = OCRRouter(analyzer=FixedStrategyAnalyzer(strategy), adapter=adapter)
    return AdaptiveOCRProcessor(
        router=router,
        settings=settings or OCRSettings(),
        audit_logger=audit_logger,
    )


def enriched(amount: float = 1.0) -> EnrichedResult:
    return EnrichedResult(
        amount=amount,
        strategy=Strategy.STANDARD,
        model="test-model",
        validation=ValidationReport(valid=True),
        confidence_score=0.8,
    )


class TestHelpers:
    """Format sniffing and cache keys."""

    @pytest.mark.parametrize("content, expected", [
        (b"\xff\xd8\xff\xe0rest", "jpeg"),
        (b"\x89PNG\r\n\x1a\n", "png"),
        (b"RIFF....WEBP", "webp"),
        (b"GIF89a", "gif"),
        (b"BM....", "bmp"),
        (b"%PDF-1.7", None),
    ])
    def test_detect_image_format(self, content, expected):
        """Leading magic bytes identify the format."""
        assert detect_image_format(content) == expected

    def test_cache_key_is_content_hash(self):
        """Same bytes, same key; different bytes, different key."""
        assert generate_cache_key(b"abc") == generate_cache_key(b"abc")
        assert generate_cache_key(b"abc") != generate_cache_key(b"abd")
        assert len(generate_cache_key(b"abc")) == 32


class TestResultCache:
    """Bounded FIFO cache."""

    def test_evicts_oldest_when_full(self):
        """Inserting the 101st entry drops the first."""
        cache = ResultCache(max_size=100)
        for i in range(101):
            cache.put(f"key-{i}", enriched(float(i + 1)))

        assert len(cache) == 100
        assert "key-0" not in cache
        assert "key-100" in cache

    def test_returns_copies(self):
        """Mutating a returned value does not touch the cache."""
        cache = ResultCache()
        cache.put("k", enriched(5.0))

        first = cache.get("k")
        first.validation.warnings.append("changed")

        assert cache.get("k").validation.warnings == []

    def test_overwrite_does_not_evict(self):
        """Re-inserting an existing key keeps the size."""
        cache = ResultCache(max_size=2)
        cache.put("a", enriched())
        cache.put("b", enriched())
        cache.put("a", enriched(2.0))

        assert len(cache) == 2
        assert cache.get("a").amount == 2.0

    def test_invalid_size(self):
        """A cache needs room for at least one entry."""
        with pytest.raises(ValueError):
            ResultCache(max_size=0)


class TestProcessReceipt:
    """Single-file processing."""

    def test_enriched_result(self):
        """Routing output is validated and enriched."""
        processor = make_processor(StubVisionAdapter())
        result = asyncio.run(processor.process_receipt(jpeg()))

        assert result.amount == 42.5
        assert result.validation.valid is True
        assert result.suggested_category == TransactionCategory.FOOD
        assert 0.0 <= result.confidence_score <= 1.0
        assert result.metadata.file_type == "image/jpeg"
        assert result.metadata.is_batch is False
        assert result.is_fallback is False

    def test_suggested_category_from_keywords(self):
        """Merchant keywords override the model's category."""
        adapter = StubVisionAdapter(default=receipt_json(
            description="Weekly shop", merchantName="FreshMart Supermarket", category="other-expense",
        ))
        result = asyncio.run(make_processor(adapter).process_receipt(jpeg()))
        assert result.suggested_category == TransactionCategory.GROCERIES

    def test_cache_hit_skips_models(self):
        """The second identical upload is served from the cache."""
        adapter = StubVisionAdapter()
        processor = make_processor(adapter)
        options = ProcessingOptions(use_cache=True)

        async def run():
            first = await processor.process_receipt(jpeg(), options)
            calls_after_first = adapter.call_count
            second = await processor.process_receipt(jpeg(), options)
            return first, second, calls_after_first

        first, second, calls_after_first = asyncio.run(run())

        assert adapter.call_count == calls_after_first
        assert second == first
        assert second is not first
        assert processor.cache_size == 1

    def test_cache_disabled_by_default(self):
        """Without use_cache every call reaches the models."""
        adapter = StubVisionAdapter()
        processor = make_processor(adapter)

        async def run():
            await processor.process_receipt(jpeg())
            await processor.process_receipt(jpeg())

        asyncio.run(run())
        assert adapter.call_count == 2
        assert processor.cache_size == 0

    def test_cache_respects_configured_size(self):
        """The processor cache is bounded by settings."""
        processor = make_processor(StubVisionAdapter(), settings=OCRSettings(cache_max_size=2))
        options = ProcessingOptions(use_cache=True)

        async def run():
            for tag in range(3):
                await processor.process_receipt(jpeg(tag), options)

        asyncio.run(run())
        assert processor.cache_size == 2

    def test_cache_hit_is_audited(self):
        """Cache hits are recorded in the audit log."""
        storage = InMemoryAuditStorage()
        processor = make_processor(StubVisionAdapter(), audit_logger=AuditLogger(storage))
        options = ProcessingOptions(use_cache=True)

        async def run():
            await processor.process_receipt(jpeg(), options)
            await processor.process_receipt(jpeg(), options)

        asyncio.run(run())
        assert [e.event_type for e in storage.events] == [AuditEventType.CACHE_HIT]

    def test_empty_file_rejected(self):
        """Empty uploads never reach a model."""
        adapter = StubVisionAdapter()
        empty = ReceiptFile(content=b"", mime_type="image/jpeg", name="empty.jpg")

        with pytest.raises(InvalidInputError):
            asyncio.run(make_processor(adapter).process_receipt(empty))
        assert adapter.call_count == 0

    def test_oversized_file_rejected(self):
        """Files over the upload limit are refused."""
        settings = OCRSettings(max_upload_size_mb=1)
        big = ReceiptFile(content=b"\xff\xd8\xff" + b"x" * (1024 * 1024), mime_type="image/jpeg")

        with pytest.raises(InvalidInputError, match="too large"):
            asyncio.run(make_processor(StubVisionAdapter(), settings=settings).process_receipt(big))

    def test_unsupported_type_rejected(self):
        """Only configured MIME types are accepted."""
        pdf = ReceiptFile(content=b"%PDF-1.7", mime_type="application/pdf", name="r.pdf")
        with pytest.raises(InvalidInputError, match="Unsupported"):
            asyncio.run(make_processor(StubVisionAdapter()).process_receipt(pdf))

    def test_signature_mismatch_only_warns(self):
        """Unrecognized magic bytes are processed anyway."""
        odd = ReceiptFile(content=b"not really a jpeg", mime_type="image/jpeg")
        result = asyncio.run(make_processor(StubVisionAdapter()).process_receipt(odd))
        assert result.amount == 42.5

    def test_fallback_when_adaptive_path_fails(self):
        """A routing failure degrades to a fallback result."""
        storage = InMemoryAuditStorage()
        adapter = StubVisionAdapter({
            NEMOTRON_NANO_VL: [ModelInvocationError("down")],
            GEMMA_3_27B: [ModelInvocationError("down")],
            GEMINI_20_FLASH: [ModelInvocationError("still down"), receipt_json(amount=8.0)],
        })
        processor = make_processor(adapter, Strategy.LIGHTWEIGHT, audit_logger=AuditLogger(storage))

        result = asyncio.run(processor.process_receipt(jpeg()))

        assert result.is_fallback is True
        assert result.confidence == 0.3
        assert result.strategy == Strategy.FALLBACK
        assert result.amount == 8.0
        assert "still down" in result.fallback_reason
        assert [e.event_type for e in storage.events] == [AuditEventType.FALLBACK_USED]

    def test_fallback_results_are_not_cached(self):
        """Degraded results are not served from the cache later."""
        adapter = StubVisionAdapter({
            NEMOTRON_NANO_VL: [ModelInvocationError("down")],
            GEMMA_3_27B: [ModelInvocationError("down")],
            GEMINI_20_FLASH: [ModelInvocationError("down"), receipt_json()],
        })
        processor = make_processor(adapter, Strategy.LIGHTWEIGHT)

        asyncio.run(processor.process_receipt(jpeg(), ProcessingOptions(use_cache=True)))
        assert processor.cache_size == 0

    def test_both_paths_fail(self):
        """When even the fallback fails the caller gets ProcessingFailedError."""
        adapter = StubVisionAdapter(default=ModelInvocationError("down", status_code=502))

        with pytest.raises(ProcessingFailedError) as exc_info:
            asyncio.run(make_processor(adapter).process_receipt(jpeg()))
        assert isinstance(exc_info.value.cause, ModelInvocationError)


class TestMetrics:
    """Running metrics."""

    def test_metrics_accumulate(self):
        """Counts, strategy histogram and success rate are tracked."""
        adapter = StubVisionAdapter({
            GEMINI_20_FLASH: [receipt_json(confidence=0.2)],
        })
        processor = make_processor(adapter, Strategy.FALLBACK)

        async def run():
            await processor.process_receipt(jpeg(1))
            await processor.process_receipt(jpeg(2))

        asyncio.run(run())
        metrics = processor.get_metrics()

        assert metrics.total_processed == 2
        assert metrics.strategy_counts == {"fallback": 2}
        assert metrics.success_rate == pytest.approx(0.5)
        assert metrics.average_processing_time_ms >= 0

    def test_cache_hits_are_not_counted(self):
        """Only processed receipts count."""
        processor = make_processor(StubVisionAdapter())
        options = ProcessingOptions(use_cache=True)

        async def run():
            await processor.process_receipt(jpeg(), options)
            await processor.process_receipt(jpeg(), options)

        asyncio.run(run())
        metrics = processor.get_metrics()
        assert metrics.total_processed == 1
        assert metrics.cache_size == 1

    def test_reset_metrics(self):
        """Reset zeroes the counters but keeps the cache."""
        processor = make_processor(StubVisionAdapter())
        asyncio.run(processor.process_receipt(jpeg(), ProcessingOptions(use_cache=True)))

        processor.reset_metrics()
        metrics = processor.get_metrics()

        assert metrics.total_processed == 0
        assert metrics.strategy_counts == {}
        assert metrics.cache_size == 1

    def test_clear_cache(self):
        """Clearing empties the cache."""
        processor = make_processor(StubVisionAdapter())
        asyncio.run(processor.process_receipt(jpeg(), ProcessingOptions(use_cache=True)))

        processor.clear_cache()
        assert processor.cache_size == 0


class TestBatch:
    """Batch processing."""

    def test_partial_failure(self):
        """One empty file fails; the rest succeed."""
        files = [jpeg(1), jpeg(2), ReceiptFile(content=b"", name="empty.jpg"), jpeg(4), jpeg(5)]
        processor = make_processor(StubVisionAdapter())

        result = asyncio.run(processor.process_batch_receipts(files, ProcessingOptions(max_concurrency=2)))

        assert result.total == 5
        assert len(result.successful) == 4
        assert len(result.failed) == 1
        assert result.failed[0].file == "empty.jpg"
        assert result.failed[0].error_type == "InvalidInputError"
        assert result.success_rate == pytest.approx(0.8)

    def test_batch_metadata(self):
        """Items are marked as batch members with their position."""
        files = [jpeg(1), jpeg(2), jpeg(3)]
        result = asyncio.run(make_processor(StubVisionAdapter()).process_batch_receipts(files))

        assert [item.file for item in result.successful] == [f.name for f in files]
        assert [item.result.metadata.batch_index for item in result.successful] == [0, 1, 2]
        assert all(item.result.metadata.is_batch for item in result.successful)

    def test_empty_batch(self):
        """No files, no division by zero."""
        result = asyncio.run(make_processor(StubVisionAdapter()).process_batch_receipts([]))
        assert result.total == 0
        assert result.success_rate == 0.0
