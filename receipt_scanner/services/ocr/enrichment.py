"""
Business-rule enrichment of OCR results.

- Category suggestion from description + merchant keywords
- Blended confidence from model confidence, validation and strategy prior
"""

from typing import Optional

from receipt_scanner.models.receipt import Strategy, TransactionCategory, ValidationReport


# Checked in declaration order; first category with a matching keyword wins
CATEGORY_KEYWORDS: dict[TransactionCategory, tuple[str, ...]] = {
    TransactionCategory.GROCERIES: ("grocery", "supermarket", "food", "fresh", "produce", "market"),
    TransactionCategory.TRANSPORTATION: ("gas", "fuel", "taxi", "uber", "lyft", "parking", "toll"),
    TransactionCategory.FOOD: ("restaurant", "cafe", "coffee", "pizza", "burger", "dining"),
    TransactionCategory.SHOPPING: ("store", "shop", "mall", "retail", "clothing", "electronics"),
    TransactionCategory.UTILITIES: ("electric", "water", "gas", "internet", "phone", "cable"),
    TransactionCategory.HEALTHCARE: ("pharmacy", "medical", "doctor", "hospital", "clinic", "drug"),
    TransactionCategory.ENTERTAINMENT: ("movie", "theater", "game", "music", "sport", "gym"),
    TransactionCategory.TRAVEL: ("hotel", "flight", "airline", "travel", "vacation", "booking"),
}

STRATEGY_CONFIDENCE_PRIORS: dict[Strategy, float] = {
    Strategy.LIGHTWEIGHT: 0.9,
    Strategy.STANDARD: 0.8,
    Strategy.BATCH: 0.7,
    Strategy.HANDWRITING: 0.6,
    Strategy.MIXED: 0.6,
    Strategy.FALLBACK: 0.4,
}
UNKNOWN_STRATEGY_PRIOR = 0.5

WARNING_PENALTY = 0.1
ERROR_PENALTY = 0.3


def suggest_category(
    description: Optional[str],
    merchant_name: Optional[str],
    default: TransactionCategory = TransactionCategory.OTHER_EXPENSE,
) -> TransactionCategory:
    text = f"{description or ''} {merchant_name or ''}".lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in text for keyword in keywords):
            return category
    return default


def calculate_overall_confidence(
    confidence: Optional[float],
    validation: ValidationReport,
    strategy: Optional[Strategy],
) -> float:
    """
    Average of the validation-adjusted model confidence and the strategy prior.

    Each warning costs 0.1; any error costs 0.3 once. A missing or zero
    model confidence counts as 0.5.
    """
    adjusted = confidence or 0.5
    adjusted -= WARNING_PENALTY * len(validation.warnings)
    if validation.errors:
        adjusted -= ERROR_PENALTY

    prior = STRATEGY_CONFIDENCE_PRIORS.get(strategy, UNKNOWN_STRATEGY_PRIOR)
    return max(0.0, min(1.0, (adjusted + prior) / 2))
