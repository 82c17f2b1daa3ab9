"""Validation and sanitization package."""

from receipt_scanner.validation.sanitizer import (
    calculate_next_recurring_date,
    normalize_amount,
    parse_date,
    sanitize_ocr_output,
    sanitize_text,
    sanitize_transaction_input,
    with_ai_spotlight_metadata,
)
from receipt_scanner.validation.validator import ReceiptValidator

__all__ = [
    "ReceiptValidator",
    "calculate_next_recurring_date",
    "normalize_amount",
    "parse_date",
    "sanitize_ocr_output",
    "sanitize_text",
    "sanitize_transaction_input",
    "with_ai_spotlight_metadata",
]
