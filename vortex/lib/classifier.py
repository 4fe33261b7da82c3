"""
Rule engine assigning each token a category and its legal actions.

Rules are evaluated in a fixed order and the first match wins:

1. RISK     risk_score >= 75
2. PREMIUM  value >= 10, verified, liquidity >= 100k, holders >= 500, risk_score <= 25
3. DUST     0.1 <= value < 10 and risk_score <= 50
4. MICRO    everything else

The order matters: a token that would qualify as PREMIUM on value but scores
75 is RISK, and a low-value token with moderate risk is MICRO, not DUST.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Tuple

from .models import ACTION_MATRIX, Action, Category, ScanSummary, Token

THRESHOLDS = {
    "risk_min_score": 75,
    "premium_min_value": Decimal("10"),
    "premium_min_liquidity": Decimal("100000"),
    "premium_min_holders": 500,
    "premium_max_risk": 25,
    "dust_min_value": Decimal("0.1"),
    "dust_max_value": Decimal("10"),
    "dust_max_risk": 50,
}


@dataclass(frozen=True)
class Classification:
    category: Category
    allowed_actions: Tuple[Action, ...]


def classify_category(token: Token) -> Category:
    value = token.value_usd

    if token.risk_score >= THRESHOLDS["risk_min_score"]:
        return Category.RISK

    if (
        value >= THRESHOLDS["premium_min_value"]
        and token.verified
        and token.liquidity >= THRESHOLDS["premium_min_liquidity"]
        and token.holders >= THRESHOLDS["premium_min_holders"]
        and token.risk_score <= THRESHOLDS["premium_max_risk"]
    ):
        return Category.PREMIUM

    if (
        THRESHOLDS["dust_min_value"] <= value < THRESHOLDS["dust_max_value"]
        and token.risk_score <= THRESHOLDS["dust_max_risk"]
    ):
        return Category.DUST

    return Category.MICRO


def classify(token: Token) -> Classification:
    """Pure: reads value, risk, liquidity, holders and verification only."""
    category = classify_category(token)
    return Classification(category=category, allowed_actions=ACTION_MATRIX[category])


def apply_classification(token: Token) -> Token:
    """Set the token's category in place. Allowed actions follow from it."""
    token.category = classify_category(token)
    return token


def summarize(tokens: Iterable[Token]) -> ScanSummary:
    summary = ScanSummary()
    for token in tokens:
        summary.for_category(token.category).add(token)
        summary.total_value += token.value_usd
        summary.total_tokens += 1
    return summary


def classify_tokens(tokens: List[Token]) -> Tuple[List[Token], ScanSummary]:
    """Classify every token and aggregate the per-category summary."""
    classified = [apply_classification(token) for token in tokens]
    return classified, summarize(classified)
