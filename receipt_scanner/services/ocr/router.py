"""
OCR Router

Given raw image bytes, runs the analyzer, picks the prompt and model chain
for the recommended strategy, and drives the escalation protocol:

1. Invoke the primary model
2. If it fails or returns (nearly) empty text, walk the escalation list
   until one returns text
3. Parse the text (JSON, embedded JSON, then regex)
4. If the parsed amount is still not positive, retry the parse against
   each escalation model not yet used and keep the first positive amount

Wall time and model-only time are tracked separately, and the result
records the model that actually produced it.

DESIGN DECISION: The router owns all retry logic. The adapter makes one
attempt per call, so every retry here is visible in the logs.
"""

import asyncio
import time
from typing import Optional

import structlog

from receipt_scanner.audit import AuditLogger
from receipt_scanner.exceptions import ModelInvocationError
from receipt_scanner.models.receipt import (
    AnalysisSummary,
    ImageAnalysis,
    ModelCandidate,
    OCRResult,
    ParsedReceipt,
    Strategy,
    VisionRequest,
)
from receipt_scanner.services.analysis import ImageAnalyzer
from receipt_scanner.services.ocr.prompts import build_prompt, get_template
from receipt_scanner.services.ocr.response_parser import (
    parse_and_validate_response,
    strip_code_fences,
)
from receipt_scanner.services.vision import (
    ModelRegistry,
    OpenRouterVisionAdapter,
    VisionModelAdapter,
)


logger = structlog.get_logger(__name__)

# Responses shorter than this (after trimming) trigger escalation
MIN_RESPONSE_CHARS = 2


def _elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


class OCRRouter:
    """
    Routes receipt images to vision models.

    All collaborators are injectable; defaults talk to OpenRouter.
    """

    def __init__(
        self,
        analyzer: Optional[ImageAnalyzer] = None,
        adapter: Optional[VisionModelAdapter] = None,
        registry: Optional[ModelRegistry] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._analyzer = analyzer or ImageAnalyzer()
        self._adapter = adapter or OpenRouterVisionAdapter()
        self._registry = registry or ModelRegistry()
        self._audit_logger = audit_logger

    async def close(self) -> None:
        await self._adapter.close()

    async def route(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> OCRResult:
        """
        Analyze the image and process it with the recommended strategy.

        If anything in that path fails, the fallback strategy is tried
        directly. Errors from the fallback strategy propagate.
        """
        try:
            # Pixel analysis is CPU-bound; keep it off the event loop
            analysis = await asyncio.to_thread(self._analyzer.analyze, image_bytes)
            result = await self.route_to_strategy(
                analysis.recommended_strategy, image_bytes, mime_type, analysis
            )
            return result.model_copy(update={
                "analysis": AnalysisSummary(
                    strategy=analysis.recommended_strategy,
                    confidence=analysis.confidence,
                    processing_time_ms=result.processing_time_ms,
                ),
            })
        except Exception as e:
            logger.warning(
                "routing_failed_using_fallback",
                error=str(e),
                error_type=type(e).__name__,
            )
            return await self.route_to_strategy(Strategy.FALLBACK, image_bytes, mime_type)

    async def route_to_strategy(
        self,
        strategy: Strategy,
        image_bytes: bytes,
        mime_type: str = "image/jpeg",
        analysis: Optional[ImageAnalysis] = None,
    ) -> OCRResult:
        """
        Process an image with a specific strategy.

        Raises:
            ModelInvocationError: If no model of the chain could be invoked at all
        """
        start = time.perf_counter()
        entry = self._registry.resolve(strategy)
        prompt = build_prompt(strategy, analysis)

        text = ""
        used_model: Optional[str] = None
        last_error: Optional[ModelInvocationError] = None
        model_time_ms = 0

        previous = entry.primary.model_id
        for index, candidate in enumerate((entry.primary, *entry.escalate)):
            if index > 0:
                await self._record_escalation(
                    strategy,
                    previous,
                    candidate.model_id,
                    "empty response" if used_model == previous else "invocation failed",
                )
            previous = candidate.model_id
            call_start = time.perf_counter()
            try:
                text = await self._invoke_text(candidate, image_bytes, mime_type, prompt)
            except ModelInvocationError as e:
                last_error = e
                logger.warning(
                    "model_invocation_failed",
                    strategy=strategy.value,
                    model=candidate.model_id,
                    status_code=e.status_code,
                    error=str(e),
                )
                continue
            finally:
                model_time_ms += _elapsed_ms(call_start)

            used_model = candidate.model_id
            if len(text.strip()) >= MIN_RESPONSE_CHARS:
                break

        if used_model is None:
            raise last_error or ModelInvocationError(f"No model configured for {strategy.value}")

        parsed = parse_and_validate_response(strip_code_fences(text), strategy)

        if parsed.amount <= 0:
            for candidate in entry.escalate:
                if candidate.model_id == used_model:
                    continue
                call_start = time.perf_counter()
                try:
                    retry_text = await self._invoke_text(candidate, image_bytes, mime_type, prompt)
                except ModelInvocationError as e:
                    logger.warning(
                        "amount_retry_failed",
                        strategy=strategy.value,
                        model=candidate.model_id,
                        error=str(e),
                    )
                    continue
                finally:
                    model_time_ms += _elapsed_ms(call_start)

                retried = parse_and_validate_response(strip_code_fences(retry_text), strategy)
                if retried.amount > 0:
                    logger.info(
                        "amount_recovered_by_escalation",
                        strategy=strategy.value,
                        model=candidate.model_id,
                    )
                    parsed = retried
                    used_model = candidate.model_id
                    break

        return self._build_result(parsed, strategy, used_model, start, model_time_ms)

    async def _record_escalation(
        self,
        strategy: Strategy,
        from_model: str,
        to_model: str,
        reason: str,
    ) -> None:
        logger.warning(
            "model_escalated",
            strategy=strategy.value,
            from_model=from_model,
            to_model=to_model,
            reason=reason,
        )
        if self._audit_logger:
            await self._audit_logger.log_model_escalated(
                strategy=strategy.value,
                from_model=from_model,
                to_model=to_model,
                reason=reason,
            )

    async def _invoke_text(
        self,
        candidate: ModelCandidate,
        image_bytes: bytes,
        mime_type: str,
        prompt: str,
    ) -> str:
        request = VisionRequest.for_candidate(candidate, image_bytes, mime_type, prompt)
        response = await self._adapter.invoke(request)
        return response.text or ""

    @staticmethod
    def _build_result(
        parsed: ParsedReceipt,
        strategy: Strategy,
        used_model: str,
        start: float,
        model_time_ms: int,
    ) -> OCRResult:
        processing_time_ms = _elapsed_ms(start)
        result = OCRResult.model_validate({
            **parsed.model_dump(),
            "strategy": strategy,
            "model": used_model,
            "processing_time_ms": processing_time_ms,
            "model_time_ms": min(model_time_ms, processing_time_ms),
            "use_case": get_template(strategy).use_case,
        })
        logger.info(
            "ocr_routed",
            strategy=strategy.value,
            model=used_model,
            amount=result.amount,
            confidence=result.confidence,
            processing_time_ms=processing_time_ms,
            model_time_ms=result.model_time_ms,
        )
        return result
