"""
Unit tests for the category rule engine.

Tests follow the Given/When/Then pattern for clarity.
"""

from decimal import Decimal

import pytest

from vortex.lib.classifier import (
    THRESHOLDS,
    apply_classification,
    classify,
    classify_category,
    classify_tokens,
    summarize,
)
from vortex.lib.models import ACTION_MATRIX, Action, Category


@pytest.fixture
def premium_token(make_token):
    """A token meeting every PREMIUM threshold exactly."""
    return make_token(
        symbol="GOOD",
        balance="10",
        price="1",
        verified=True,
        liquidity=Decimal("100000"),
        holders=500,
        risk_score=25,
    )


class TestClassifyCategory:
    """Tests for rule order and boundaries."""

    def test_premium_at_exact_thresholds(self, premium_token):
        assert classify_category(premium_token) == Category.PREMIUM

    def test_risk_wins_over_premium(self, premium_token):
        """
        Given a token meeting PREMIUM value thresholds but scoring 75
        When classifying it
        Then it should be RISK, because the risk rule is evaluated first
        """
        # Given
        premium_token.risk_score = 75
        premium_token.balance_formatted = Decimal("1000000")

        # When / Then
        assert classify_category(premium_token) == Category.RISK

    @pytest.mark.parametrize(
        "field,value",
        [
            ("verified", False),
            ("liquidity", Decimal("99999.99")),
            ("holders", 499),
            ("risk_score", 26),
        ],
    )
    def test_missing_any_premium_condition_falls_through(self, premium_token, field, value):
        """
        Given a $10 token failing exactly one PREMIUM condition
        When classifying it
        Then it is not PREMIUM and, at $10, not DUST either
        """
        # Given
        setattr(premium_token, field, value)

        # When
        category = classify_category(premium_token)

        # Then
        assert category == Category.MICRO

    @pytest.mark.parametrize(
        "balance,expected",
        [
            ("0.1", Category.DUST),
            ("9.99", Category.DUST),
            ("10", Category.MICRO),
            ("0.0999", Category.MICRO),
            ("0", Category.MICRO),
        ],
    )
    def test_dust_value_band(self, make_token, balance, expected):
        token = make_token(balance=balance, price="1", risk_score=0)
        assert classify_category(token) == expected

    def test_moderate_risk_low_value_is_micro(self, make_token):
        """
        Given a $5 token scoring 51
        When classifying it
        Then it is MICRO, since DUST requires a score of at most 50
        """
        # Given
        token = make_token(balance="5", price="1", risk_score=51)

        # When / Then
        assert classify_category(token) == Category.MICRO
        token.risk_score = 50
        assert classify_category(token) == Category.DUST

    def test_risk_threshold_boundary(self, make_token):
        assert classify_category(make_token(risk_score=THRESHOLDS["risk_min_score"])) == Category.RISK
        assert classify_category(make_token(risk_score=74, balance="5")) == Category.MICRO

    def test_spot_value_example_without_quality_signals_is_micro(self, make_token):
        """
        Given 2.5 units at $3200 with no liquidity, holder or verification data
        When classifying it
        Then it is worth $8000 but MICRO, not PREMIUM
        """
        # Given
        token = make_token(symbol="ETH", balance="2.5", price="3200")

        # When / Then
        assert token.value_usd == Decimal("8000")
        assert classify_category(token) == Category.MICRO


class TestClassify:
    def test_classification_carries_matrix_actions(self, premium_token):
        result = classify(premium_token)
        assert result.category == Category.PREMIUM
        assert result.allowed_actions == (Action.HOLD, Action.SWAP)

    def test_classify_is_pure(self, make_token):
        # Given
        token = make_token(balance="0.01", category=Category.DUST)

        # When
        classify(token)

        # Then
        assert token.category == Category.DUST

    def test_apply_classification_is_idempotent(self, make_token):
        """
        Given a classified token
        When classifying it again
        Then the category does not change
        """
        # Given
        token = apply_classification(make_token(balance="3", risk_score=80))
        first = token.category

        # When
        apply_classification(token)

        # Then
        assert first == token.category == Category.RISK
        assert token.allowed_actions == ACTION_MATRIX[Category.RISK]


class TestSummaries:
    def test_classify_tokens_builds_summary(self, make_token, premium_token):
        """
        Given one token per category
        When classifying and summarizing them
        Then counts and values are aggregated per category and in total
        """
        # Given
        tokens = [
            premium_token,
            make_token(symbol="DUSTY", balance="2", price="1"),
            make_token(symbol="TINY", balance="0.01", price="1"),
            make_token(symbol="BAD", balance="3", price="1", risk_score=90),
        ]

        # When
        classified, summary = classify_tokens(tokens)

        # Then
        assert [token.category for token in classified] == [
            Category.PREMIUM,
            Category.DUST,
            Category.MICRO,
            Category.RISK,
        ]
        assert summary.total_tokens == 4
        assert summary.total_value == Decimal("15.01")
        assert summary.premium.value == Decimal("10")
        assert summary.risk.count == 1
        assert summary.micro.tokens[0].symbol == "TINY"

    def test_summarize_empty(self):
        summary = summarize([])
        assert summary.total_tokens == 0
        assert summary.total_value == Decimal("0")
