"""
Unit tests for pricing calculations and token estimation.

Tests cost accuracy, rounding behavior, and cost-range parsing.
"""

import pytest

from issue_estimator.config.loader import DEFAULT_COST_RANGES, DEFAULT_TIERS
from issue_estimator.core.pricing import (
    CostRange,
    calculate_cost,
    cost_bounds,
    estimate_analysis_cost,
    parse_cost_range,
)
from issue_estimator.core.token_counter import TokenUsage, estimate_request_tokens, estimate_tokens


class TestTokenUsage:
    """Test TokenUsage dataclass."""

    def test_total_tokens_calculation(self):
        """Verify total_tokens is computed correctly."""
        usage = TokenUsage(prompt_tokens=100, completion_tokens=50)
        assert usage.total_tokens == 150

    def test_zero_tokens(self):
        """Verify zero token handling."""
        usage = TokenUsage(prompt_tokens=0, completion_tokens=0)
        assert usage.total_tokens == 0


class TestTokenEstimation:
    """Test the local token estimator."""

    def test_empty_text(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens(None) == 0

    def test_rounds_up(self):
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_deterministic(self):
        text = "x" * 4001
        assert estimate_tokens(text) == estimate_tokens(text) == 1001

    def test_request_tokens_include_completion_budget(self):
        tier = DEFAULT_TIERS["small"]
        messages = [
            {"role": "system", "content": "a" * 40},
            {"role": "user", "content": "b" * 80},
        ]

        assert estimate_request_tokens(messages, tier) == 10 + 20 + tier.max_completion


class TestCostCalculation:
    """Test cost calculation accuracy and rounding."""

    def test_exact_cost_small_tier(self):
        """Verify exact cost calculation for the small tier."""
        usage = TokenUsage(prompt_tokens=1_000_000, completion_tokens=500_000)
        cost = calculate_cost(DEFAULT_TIERS["small"], usage)
        # Prompt: 1M * $0.05/1M = $0.05
        # Completion: 0.5M * $0.08/1M = $0.04
        assert cost == pytest.approx(0.09)

    def test_exact_cost_large_tier(self):
        usage = TokenUsage(prompt_tokens=2_000_000, completion_tokens=1_000_000)
        cost = calculate_cost(DEFAULT_TIERS["large"], usage)
        # 2 * 0.59 + 0.79
        assert cost == pytest.approx(1.97)

    def test_rounding_is_conservative(self):
        """Verify tiny costs round UP, never to zero."""
        usage = TokenUsage(prompt_tokens=1, completion_tokens=0)
        assert calculate_cost(DEFAULT_TIERS["small"], usage) == 0.000001

    def test_estimate_analysis_cost(self):
        assert estimate_analysis_cost(1_000_000, DEFAULT_TIERS["regular"]) == pytest.approx(0.075)
        assert estimate_analysis_cost(0, DEFAULT_TIERS["regular"]) == 0.0


class TestCostRangeParsing:
    """Test parsing of cost-range labels."""

    def test_dollar_range(self):
        assert parse_cost_range("$120-$300") == CostRange(120, 300)

    def test_range_with_thousands_separator(self):
        assert parse_cost_range("$1,000 - 2,500") == CostRange(1000, 2500)

    def test_reversed_range_is_ordered(self):
        assert parse_cost_range("$300-$120") == CostRange(120, 300)

    def test_single_value(self):
        assert parse_cost_range("about $80") == CostRange(80, 80)

    def test_unparsable(self):
        assert parse_cost_range("invalid-cost") is None
        assert parse_cost_range("") is None
        assert parse_cost_range(None) is None

    def test_cost_bounds_falls_back_to_complexity_range(self):
        assert cost_bounds("unknown", 2, DEFAULT_COST_RANGES) == (50, 120)
        assert cost_bounds("$10-$20", 5, DEFAULT_COST_RANGES) == (10, 20)
