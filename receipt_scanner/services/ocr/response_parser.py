"""
Model response parsing.

Vision models are asked for JSON but do not always comply. Parsing runs
in three stages and always produces a ParsedReceipt:

1. Direct JSON parse of the fence-stripped text
2. JSON parse of the first balanced {...} block inside the text
3. Regex extraction of amount / date / description from plain prose

Known limitation: thousands separators are stripped before conversion, so a
European comma-decimal amount such as "45,00" reads as 4500.
"""

import json
import math
import re
from typing import Any, Optional

import structlog

from receipt_scanner.exceptions import ResponseParseError
from receipt_scanner.models.receipt import ParsedReceipt, Strategy, TransactionCategory, utc_now
from receipt_scanner.validation.sanitizer import parse_date


logger = structlog.get_logger(__name__)


CODE_FENCE_RE = re.compile(r"```(?:json)?\n?", re.IGNORECASE)

_NUMBER = r"(\d{1,3}(?:[,\s]\d{2,3})*(?:[.,]\d{2})?|\d+[.,]?\d*)"
KEYWORD_AMOUNT_RE = re.compile(r"(total|amount|amount due|grand\s*total)[^\d]*" + _NUMBER, re.IGNORECASE)
BARE_AMOUNT_RE = re.compile(r"\b(?:[$€£₹¥]\s*)?" + _NUMBER + r"\b")
ISO_DATE_RE = re.compile(r"(\d{4}-\d{2}-\d{2})")
SEPARATORS_RE = re.compile(r"[,\s]")
LETTER_RE = re.compile(r"[A-Za-z]")

# Strategy-specific fields carried into ParsedReceipt.extras
EXTRA_FIELDS = ("notes", "receiptCount", "textTypeBreakdown", "processingNotes")

DEFAULT_DESCRIPTION = "Receipt scan"
DEFAULT_MERCHANT = "Unknown Merchant"
DEFAULT_JSON_CONFIDENCE = 0.8
TEXT_FALLBACK_CONFIDENCE = 0.5
TEXT_FALLBACK_DESCRIPTION = "Receipt scan (parsed from text)"
TEXT_FALLBACK_NOTE = "Response parsed from non-JSON format"


def strip_code_fences(text: Optional[str]) -> str:
    return CODE_FENCE_RE.sub("", text or "").replace("```", "").strip()


def extract_first_balanced_json(text: str) -> Optional[str]:
    """Return the first top-level {...} block, found by brace counting."""
    depth = 0
    start = -1
    for i, ch in enumerate(text or ""):
        if ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0 and start != -1:
                return text[start:i + 1]
    return None


def salvage_amount_text(text: str) -> Optional[str]:
    """Find the most likely total in free text, preferring keyword-adjacent numbers."""
    match = KEYWORD_AMOUNT_RE.search(text or "")
    if match:
        return SEPARATORS_RE.sub("", match.group(2))
    match = BARE_AMOUNT_RE.search(text or "")
    if match:
        return SEPARATORS_RE.sub("", match.group(1))
    return None


def first_meaningful_line(text: str) -> Optional[str]:
    for line in (text or "").replace("\r", "").split("\n"):
        line = line.strip()
        if line and LETTER_RE.search(line):
            return line
    return None


def to_amount(value: Any) -> Optional[float]:
    """Coerce a model-supplied amount to float; None when unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        cleaned = value
    else:
        cleaned = SEPARATORS_RE.sub("", str(value)).lstrip("$€£₹¥")
    try:
        return float(cleaned)
    except (ValueError, OverflowError):
        return None


def clamp_amount(value: Optional[float]) -> float:
    if value is None or not math.isfinite(value) or value < 0:
        return 0.0
    return value


def to_confidence(value: Any, default: float) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if not math.isfinite(confidence) or confidence == 0:
        return default
    return max(0.0, min(confidence, 1.0))


def _load_json_object(cleaned: str) -> dict[str, Any]:
    try:
        data = json.loads(cleaned)
    except ValueError:
        candidate = extract_first_balanced_json(cleaned)
        if candidate is None:
            raise ResponseParseError("No JSON object in model response")
        try:
            data = json.loads(candidate)
        except ValueError as e:
            raise ResponseParseError(f"Embedded JSON is malformed: {e}") from e

    if not isinstance(data, dict):
        raise ResponseParseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def extract_basic_info(text: str, strategy: Strategy) -> ParsedReceipt:
    """Regex extraction for responses that contain no usable JSON."""
    amount_text = salvage_amount_text(text)
    date_match = ISO_DATE_RE.search(text or "")

    return ParsedReceipt(
        amount=clamp_amount(to_amount(amount_text)),
        date=(parse_date(date_match.group(1)) if date_match else None) or utc_now(),
        description=first_meaningful_line(text) or TEXT_FALLBACK_DESCRIPTION,
        category=TransactionCategory.OTHER_EXPENSE,
        merchant_name=DEFAULT_MERCHANT,
        confidence=TEXT_FALLBACK_CONFIDENCE,
        strategy=strategy,
        raw_response=text or "",
        note=TEXT_FALLBACK_NOTE,
    )


def parse_and_validate_response(text: str, strategy: Strategy) -> ParsedReceipt:
    """
    Turn raw model text into a ParsedReceipt.

    Never raises. Missing fields get fixed defaults, and an amount missing
    from the JSON is recovered from the raw text when possible.
    """
    cleaned = strip_code_fences(text)
    try:
        data = _load_json_object(cleaned)
    except ResponseParseError as e:
        logger.info("response_not_json", strategy=strategy.value, reason=str(e))
        return extract_basic_info(text, strategy)

    amount = to_amount(data.get("amount"))
    if amount is None or amount == 0 or math.isnan(amount):
        amount = to_amount(salvage_amount_text(text))

    description = data.get("description")
    if not description or len(str(description).strip()) < 2:
        description = first_meaningful_line(text) or DEFAULT_DESCRIPTION

    merchant = data.get("merchantName") or data.get("merchant_name") or DEFAULT_MERCHANT

    return ParsedReceipt(
        amount=clamp_amount(amount),
        date=parse_date(data.get("date")) or utc_now(),
        description=str(description),
        category=TransactionCategory.coerce(data.get("category") or TransactionCategory.OTHER_EXPENSE),
        merchant_name=str(merchant),
        confidence=to_confidence(data.get("confidence"), DEFAULT_JSON_CONFIDENCE),
        strategy=strategy,
        raw_response=text or "",
        extras={k: data[k] for k in EXTRA_FIELDS if k in data},
    )
