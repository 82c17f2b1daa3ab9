"""
Two-Stage Validation of Extracted Receipt Data

STAGE 1 - SCHEMA VALIDATION:
- Required field presence (amount, date)
- Amount must be a positive, finite number
- Failures here are ERRORS and flag the result invalid

STAGE 2 - SEMANTIC VALIDATION:
- Future date detection
- Implausibly old date detection
- Unusually high amount detection
- Missing or very short description
- Findings here are WARNINGS only

IMPORTANT: Validation NEVER silently fixes issues and never blocks data.
Best-effort data is always returned alongside the report, because partial
information beats none when capturing an expense.
"""

import math
from datetime import datetime, timezone
from typing import Optional

from receipt_scanner.config import OCRSettings, get_settings
from receipt_scanner.models.receipt import ParsedReceipt, ValidationReport, utc_now


INVALID_AMOUNT = "Invalid or missing amount"
INVALID_DATE = "Invalid or missing date"
HIGH_AMOUNT = "Unusually high amount detected"
FUTURE_DATE = "Future date detected"
OLD_DATE = "Very old date detected"
SHORT_DESCRIPTION = "Very short or missing description"


class ReceiptValidator:
    """
    Validates OCR output through a two-stage pipeline.

    Stage 2 only runs its date checks when stage 1 found a usable date.
    """

    def __init__(self, settings: Optional[OCRSettings] = None):
        self._settings = settings or get_settings().ocr

    def _validate_schema(self, result: ParsedReceipt) -> list[str]:
        """Stage 1: returns error messages."""
        errors = []

        amount = result.amount
        if amount is None or math.isnan(amount) or amount <= 0:
            errors.append(INVALID_AMOUNT)

        if result.date is None:
            errors.append(INVALID_DATE)

        return errors

    def _validate_semantic(
        self,
        result: ParsedReceipt,
        now: Optional[datetime] = None,
    ) -> list[str]:
        """Stage 2: returns warning messages."""
        warnings = []
        now = now or utc_now()

        if result.amount and result.amount > self._settings.high_amount_warning:
            warnings.append(HIGH_AMOUNT)

        if result.date is not None:
            when = result.date
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            if when > now:
                warnings.append(FUTURE_DATE)
            if when < datetime(self._settings.min_valid_year, 1, 1, tzinfo=timezone.utc):
                warnings.append(OLD_DATE)

        if not result.description or len(result.description.strip()) < 2:
            warnings.append(SHORT_DESCRIPTION)

        return warnings

    def validate_extracted_data(
        self,
        result: ParsedReceipt,
        now: Optional[datetime] = None,
    ) -> ValidationReport:
        """
        Run both stages.

        Args:
            result: Parsed or routed OCR output
            now: Reference time for the future-date check (defaults to now)
        """
        errors = self._validate_schema(result)
        warnings = self._validate_semantic(result, now=now)
        return ValidationReport(
            valid=not errors,
            errors=errors,
            warnings=warnings,
        )

    def get_user_friendly_summary(self, report: ValidationReport) -> str:
        """
        Generate a user-friendly summary of a validation report.

        This is what we show next to a scanned receipt.
        """
        if report.valid and not report.warnings:
            return "✅ All checks passed! Please review the details below."

        lines = []

        if report.errors:
            lines.append("❌ Some required information could not be extracted:")
            for error in report.errors:
                lines.append(f"   • {error}")

        if report.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in report.warnings:
                lines.append(f"   • {warning}")

        lines.append("")
        lines.append("You can still save this receipt, but please review carefully.")

        return "\n".join(lines)
