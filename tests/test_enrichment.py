"""Tests for category suggestion and blended confidence."""

import pytest

from receipt_scanner.models.receipt import Strategy, TransactionCategory, ValidationReport
from receipt_scanner.services.ocr import calculate_overall_confidence, suggest_category


CLEAN = ValidationReport(valid=True)


class TestSuggestCategory:
    """Keyword matching on description and merchant."""

    @pytest.mark.parametrize("description, merchant, expected", [
        ("Weekly groceries", "City Supermarket", TransactionCategory.GROCERIES),
        ("Ride home", "Uber", TransactionCategory.TRANSPORTATION),
        ("Latte", "Blue Bottle Coffee", TransactionCategory.FOOD),
        ("Prescription", "Corner Pharmacy", TransactionCategory.HEALTHCARE),
        ("Tickets", "Movie Palace", TransactionCategory.ENTERTAINMENT),
        ("Two nights", "Harbor Hotel", TransactionCategory.TRAVEL),
    ])
    def test_keywords(self, description, merchant, expected):
        """The first category with a matching keyword wins."""
        assert suggest_category(description, merchant) == expected

    def test_gas_matches_transportation_first(self):
        """'gas' appears twice; transportation is checked before utilities."""
        assert suggest_category("Gas bill", None) == TransactionCategory.TRANSPORTATION

    def test_no_match_keeps_default(self):
        """Without a keyword the given default is returned."""
        assert suggest_category("Misc", "ACME", TransactionCategory.GIFTS) == TransactionCategory.GIFTS
        assert suggest_category(None, None) == TransactionCategory.OTHER_EXPENSE


class TestOverallConfidence:
    """Blend of model confidence, validation and strategy prior."""

    def test_clean_standard(self):
        """(0.9 + 0.8) / 2."""
        assert calculate_overall_confidence(0.9, CLEAN, Strategy.STANDARD) == pytest.approx(0.85)

    def test_each_warning_costs(self):
        """Two warnings subtract 0.2 before averaging."""
        report = ValidationReport(valid=True, warnings=["a", "b"])
        assert calculate_overall_confidence(0.9, report, Strategy.STANDARD) == pytest.approx(0.75)

    def test_errors_cost_once(self):
        """Any number of errors subtracts 0.3."""
        report = ValidationReport(valid=False, errors=["a", "b"])
        assert calculate_overall_confidence(0.9, report, Strategy.LIGHTWEIGHT) == pytest.approx(0.75)

    def test_missing_confidence_counts_as_half(self):
        """Zero or None confidence starts from 0.5."""
        assert calculate_overall_confidence(None, CLEAN, Strategy.FALLBACK) == pytest.approx(0.45)
        assert calculate_overall_confidence(0.0, CLEAN, Strategy.FALLBACK) == pytest.approx(0.45)

    def test_unknown_strategy_prior(self):
        """No strategy means a neutral prior."""
        assert calculate_overall_confidence(0.5, CLEAN, None) == pytest.approx(0.5)

    def test_never_negative(self):
        """Heavy penalties clamp at zero."""
        report = ValidationReport(valid=False, errors=["a"], warnings=["w"] * 10)
        assert calculate_overall_confidence(0.1, report, Strategy.FALLBACK) == 0.0
