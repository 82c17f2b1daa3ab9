"""OCR routing and adaptive processing package."""

from receipt_scanner.services.ocr.adaptive_processor import (
    AdaptiveOCRProcessor,
    ProcessingMetrics,
    ResultCache,
    detect_image_format,
    generate_cache_key,
)
from receipt_scanner.services.ocr.enrichment import (
    calculate_overall_confidence,
    suggest_category,
)
from receipt_scanner.services.ocr.prompts import build_prompt, get_template
from receipt_scanner.services.ocr.response_parser import (
    extract_basic_info,
    parse_and_validate_response,
    strip_code_fences,
)
from receipt_scanner.services.ocr.router import OCRRouter

__all__ = [
    "AdaptiveOCRProcessor",
    "OCRRouter",
    "ProcessingMetrics",
    "ResultCache",
    "build_prompt",
    "calculate_overall_confidence",
    "detect_image_format",
    "extract_basic_info",
    "generate_cache_key",
    "get_template",
    "parse_and_validate_response",
    "strip_code_fences",
    "suggest_category",
]
