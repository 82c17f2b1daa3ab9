"""Tests for parsing vision-model responses."""

import json
import math
from datetime import datetime, timezone

import pytest

from receipt_scanner.models.receipt import Strategy, TransactionCategory
from receipt_scanner.services.ocr.response_parser import (
    extract_basic_info,
    extract_first_balanced_json,
    parse_and_validate_response,
    salvage_amount_text,
    strip_code_fences,
)

from conftest import receipt_json


class TestHelpers:
    """Text helpers used by the parser."""

    def test_strip_code_fences(self):
        """Markdown fences around JSON are removed."""
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences(None) == ""

    def test_first_balanced_json(self):
        """Nested braces are matched."""
        text = 'Here you go: {"a": {"b": 1}} and {"c": 2}'
        assert extract_first_balanced_json(text) == '{"a": {"b": 1}}'

    def test_no_json_block(self):
        """Prose without braces has no block."""
        assert extract_first_balanced_json("no braces here") is None

    def test_salvage_prefers_total_keyword(self):
        """A number after 'Total' beats earlier numbers."""
        assert salvage_amount_text("Table 4\nGrand Total: $1,234.56") == "1234.56"

    def test_salvage_bare_number(self):
        """Without a keyword the first number is used."""
        assert salvage_amount_text("Paid 17.25 in cash") == "17.25"


class TestParseAndValidateResponse:
    """The three parsing stages."""

    def test_direct_json(self):
        """Well-formed JSON maps straight onto the fields."""
        parsed = parse_and_validate_response(receipt_json(), Strategy.STANDARD)

        assert parsed.amount == 42.5
        assert parsed.date == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert parsed.description == "Coffee and bagel"
        assert parsed.merchant_name == "Corner Cafe"
        assert parsed.category == TransactionCategory.FOOD
        assert parsed.confidence == 0.9
        assert parsed.strategy == Strategy.STANDARD
        assert parsed.note is None

    def test_fenced_json(self):
        """Code fences do not get in the way."""
        parsed = parse_and_validate_response(f"```json\n{receipt_json()}\n```", Strategy.STANDARD)
        assert parsed.amount == 42.5

    def test_embedded_json(self):
        """JSON surrounded by chatter is found."""
        text = f"Sure! Here is the data:\n{receipt_json(amount=9.99)}\nLet me know."
        parsed = parse_and_validate_response(text, Strategy.STANDARD)
        assert parsed.amount == 9.99
        assert parsed.note is None

    def test_string_amount_with_separators(self):
        """Amounts given as strings are cleaned."""
        parsed = parse_and_validate_response(receipt_json(amount="$1,250.00"), Strategy.STANDARD)
        assert parsed.amount == 1250.0

    def test_missing_fields_get_defaults(self):
        """Absent fields fall back to fixed defaults."""
        parsed = parse_and_validate_response('{"amount": 5}', Strategy.STANDARD)

        assert parsed.merchant_name == "Unknown Merchant"
        assert parsed.category == TransactionCategory.OTHER_EXPENSE
        assert parsed.confidence == 0.8
        assert parsed.date.tzinfo is not None

    def test_unknown_category_is_coerced(self):
        """Categories outside the allowed set become other-expense."""
        parsed = parse_and_validate_response(receipt_json(category="spaceships"), Strategy.STANDARD)
        assert parsed.category == TransactionCategory.OTHER_EXPENSE

    def test_negative_amount_becomes_zero(self):
        """Amounts are never negative."""
        parsed = parse_and_validate_response(receipt_json(amount=-12), Strategy.STANDARD)
        assert parsed.amount == 0.0

    def test_confidence_is_clamped(self):
        """Self-reported confidence stays within [0, 1]."""
        parsed = parse_and_validate_response(receipt_json(confidence=7), Strategy.STANDARD)
        assert parsed.confidence == 1.0

    def test_strategy_extras_are_kept(self):
        """Strategy-specific fields survive in extras."""
        parsed = parse_and_validate_response(receipt_json(receiptCount=2), Strategy.BATCH)
        assert parsed.extras == {"receiptCount": 2}

    def test_plain_text_uses_regex_extraction(self):
        """Prose responses still yield an amount, date and description."""
        text = "Walmart Supercenter\nDate 2024-05-02\nTOTAL 23.40"
        parsed = parse_and_validate_response(text, Strategy.LIGHTWEIGHT)

        assert parsed.amount == 23.40
        assert parsed.date == datetime(2024, 5, 2, tzinfo=timezone.utc)
        assert parsed.description == "Walmart Supercenter"
        assert parsed.confidence == 0.5
        assert parsed.note == "Response parsed from non-JSON format"

    def test_text_without_amount(self):
        """Nothing numeric gives a zero amount, not an error."""
        parsed = extract_basic_info("nothing useful here", Strategy.STANDARD)
        assert parsed.amount == 0.0
        assert parsed.description == "nothing useful here"

    @pytest.mark.parametrize("text", ["", "   ", "[1, 2, 3]"])
    def test_never_raises(self, text):
        """Empty or non-object responses still produce a result."""
        parsed = parse_and_validate_response(text, Strategy.FALLBACK)
        assert parsed.strategy == Strategy.FALLBACK
        assert parsed.amount >= 0

    def test_currency_prefixed_total_in_prose(self):
        """A currency symbol before the total does not hide the amount."""
        parsed = parse_and_validate_response(
            "Total: ₹45.00 on 2024-01-15 at ACME Store", Strategy.STANDARD
        )

        assert parsed.amount == 45.0
        assert parsed.date == datetime(2024, 1, 15, tzinfo=timezone.utc)
        assert parsed.confidence == 0.5
        assert parsed.note == "Response parsed from non-JSON format"


class TestHostileResponses:
    """Model output crafted to break number and date conversion."""

    def test_oversized_integer_amount(self):
        """An integer too large for a float yields a finite amount."""
        parsed = parse_and_validate_response(json.dumps({"amount": 10 ** 400}), Strategy.STANDARD)
        assert math.isfinite(parsed.amount)
        assert parsed.amount >= 0

    def test_oversized_integer_confidence(self):
        """An integer too large for a float falls back to the default confidence."""
        parsed = parse_and_validate_response(
            json.dumps({"amount": 5, "confidence": 10 ** 400}), Strategy.STANDARD
        )
        assert parsed.confidence == 0.8

    def test_date_out_of_range_in_utc(self):
        """A date that overflows when converted to UTC is replaced by now."""
        before = datetime.now(timezone.utc)
        parsed = parse_and_validate_response(
            json.dumps({"amount": 5, "date": "9999-12-31T23:00:00-05:00"}), Strategy.STANDARD
        )
        assert parsed.amount == 5.0
        assert parsed.date >= before
        assert parsed.date.year < 9999
