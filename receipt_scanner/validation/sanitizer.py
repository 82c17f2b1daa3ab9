"""
Sanitization of OCR Output and Transaction Input

DESIGN DECISION: Text produced by a vision model is attacker-controlled.
A receipt can carry printed text like "ignore previous instructions", and
that text would flow into descriptions that later feed AI summaries.

Before anything reaches storage or another model we:
1. Strip control characters, code fences and script/style blocks
2. Remove common prompt-injection phrases
3. Restrict free text to a conservative character set
4. Clamp amounts to [0, 1e7] and round to cents
5. Force categories into the allowed set

ScannedReceipt additionally carries spotlighting metadata telling
downstream AI consumers which fields they may rely on.
"""

import calendar
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from receipt_scanner.models.receipt import OCRResult, TransactionCategory, ValidationReport, utc_now
from receipt_scanner.models.transaction import (
    RecurringInterval,
    SanitizedReceipt,
    ScannedReceipt,
    SpotlightMetadata,
    TransactionDraft,
    TransactionType,
)


MAX_AMOUNT = 1e7

DATE_FORMATS = ("%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%Y/%m/%d")

CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")
SCRIPT_RE = re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)
STYLE_RE = re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE)
WHITESPACE_RE = re.compile(r"\s+")
DISALLOWED_CHARS_RE = re.compile(r"[^\w .,;:@&()\-/+#!'?]")

INJECTION_PATTERNS = [
    re.compile(r"ignore (all )?previous instructions", re.IGNORECASE),
    re.compile(r"disregard (the )?above", re.IGNORECASE),
    re.compile(r"you are (now|also)", re.IGNORECASE),
    re.compile(r"system:\s*", re.IGNORECASE),
    re.compile(r"assistant:\s*", re.IGNORECASE),
    re.compile(r"user:\s*", re.IGNORECASE),
    re.compile(r"#?prompt\s*:\s*", re.IGNORECASE),
]


def sanitize_text(value: Any, max_len: int = 200, allow_basic: bool = False) -> str:
    """
    Clean untrusted free text.

    Args:
        value: Anything; None becomes ""
        max_len: Hard length limit
        allow_basic: Skip the character whitelist (used for short enum-like fields)
    """
    text = "" if value is None else str(value)

    text = CONTROL_CHARS_RE.sub(" ", text)
    text = CODE_BLOCK_RE.sub(" ", text)
    text = SCRIPT_RE.sub(" ", text)
    text = STYLE_RE.sub(" ", text)
    text = WHITESPACE_RE.sub(" ", text).strip()

    for pattern in INJECTION_PATTERNS:
        text = pattern.sub("", text)

    if not allow_basic:
        text = DISALLOWED_CHARS_RE.sub("", text)

    return text.strip()[:max_len]


def normalize_amount(value: Any) -> float:
    """Non-numeric or non-finite -> 0; clamp to [0, 1e7]; round to cents."""
    if isinstance(value, bool):
        value = int(value)
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return round(min(max(number, 0.0), MAX_AMOUNT), 2)


def parse_date(value: Any) -> Optional[datetime]:
    """Parse an ISO or common day/month date into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        parsed = None
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except (ValueError, OverflowError):
            for fmt in DATE_FORMATS:
                try:
                    parsed = datetime.strptime(raw, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    # Offsets near datetime.max/min can push the UTC value out of range
    try:
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def sanitize_ocr_output(result: OCRResult, category: Optional[Any] = None) -> SanitizedReceipt:
    """
    Sanitize routed OCR output.

    Args:
        result: Router or processor output
        category: Overrides result.category (e.g. the suggested category)
    """
    chosen = category if category is not None else result.category
    if isinstance(chosen, TransactionCategory):
        chosen = chosen.value
    raw_category = sanitize_text(chosen, max_len=40, allow_basic=True)
    return SanitizedReceipt(
        amount=normalize_amount(result.amount),
        date=parse_date(result.date) or utc_now(),
        description=sanitize_text(result.description, max_len=200),
        category=TransactionCategory.coerce(raw_category),
        merchant_name=sanitize_text(result.merchant_name, max_len=120),
    )


def with_ai_spotlight_metadata(
    receipt: SanitizedReceipt,
    strategy: Optional[Any] = None,
    confidence: Optional[float] = None,
    processing_time_ms: Optional[int] = None,
    is_fallback: bool = False,
    validation: Optional[ValidationReport] = None,
) -> ScannedReceipt:
    """Attach spotlighting metadata to a sanitized receipt."""
    return ScannedReceipt(
        **receipt.model_dump(),
        metadata=SpotlightMetadata(
            strategy=strategy,
            confidence=confidence,
            processing_time_ms=processing_time_ms,
            is_fallback=is_fallback,
            validation=validation,
        ),
    )


def _pick(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def sanitize_transaction_input(data: dict[str, Any]) -> TransactionDraft:
    """
    Normalize a client-supplied transaction payload.

    Accepts camelCase or snake_case keys.
    """
    raw_type = _pick(data, "type")
    try:
        transaction_type = TransactionType(raw_type)
    except ValueError:
        transaction_type = TransactionType.EXPENSE

    raw_interval = _pick(data, "recurringInterval", "recurring_interval")
    try:
        interval = RecurringInterval(raw_interval)
    except ValueError:
        interval = None

    raw_date = _pick(data, "date")
    when = (parse_date(raw_date) if raw_date else None) or utc_now()

    return TransactionDraft(
        type=transaction_type,
        amount=normalize_amount(_pick(data, "amount")),
        description=sanitize_text(_pick(data, "description"), max_len=200),
        date=when,
        category=sanitize_text(_pick(data, "category"), max_len=40, allow_basic=True) or "other-expense",
        merchant_name=sanitize_text(_pick(data, "merchantName", "merchant_name"), max_len=120),
        account_id=_pick(data, "accountId", "account_id"),
        receipt_url=_pick(data, "receiptUrl", "receipt_url"),
        is_recurring=bool(_pick(data, "isRecurring", "is_recurring")),
        recurring_interval=interval,
    )


def _add_months(when: datetime, months: int) -> datetime:
    month_index = when.month - 1 + months
    year = when.year + month_index // 12
    month = month_index % 12 + 1
    day = min(when.day, calendar.monthrange(year, month)[1])
    return when.replace(year=year, month=month, day=day)


def calculate_next_recurring_date(when: datetime, interval: RecurringInterval) -> datetime:
    """Next occurrence; month and year steps clamp to the end of shorter months."""
    interval = RecurringInterval(interval)
    if interval == RecurringInterval.DAILY:
        return when + timedelta(days=1)
    if interval == RecurringInterval.WEEKLY:
        return when + timedelta(days=7)
    if interval == RecurringInterval.MONTHLY:
        return _add_months(when, 1)
    return _add_months(when, 12)
