"""
Pricing calculations and cost-range handling.

Converts token counts into dollar estimates for a tier and parses the
cost-range labels produced by analysis.
"""

import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_UP
from typing import Dict, Optional, Tuple

from issue_estimator.config.loader import TierConfig
from .token_counter import TokenUsage

TOKENS_PER_PRICE_UNIT = Decimal("1000000")

_NUMBER_PATTERN = re.compile(r"\d[\d,]*(?:\.\d+)?")


@dataclass(frozen=True)
class CostRange:
    """Minimum and maximum dollar amount parsed from a label like "$120-$300"."""
    minimum: int
    maximum: int


def calculate_cost(tier: TierConfig, usage: TokenUsage) -> float:
    """Calculate dollar cost of a completed request with conservative rounding.

    Args:
        tier: Tier the request ran on (prices per 1M tokens)
        usage: Token usage reported by the service

    Returns:
        Total cost rounded UP to 6 decimal places
    """
    prompt_cost = (Decimal(usage.prompt_tokens) / TOKENS_PER_PRICE_UNIT) * Decimal(str(tier.price_input))
    completion_cost = (Decimal(usage.completion_tokens) / TOKENS_PER_PRICE_UNIT) * Decimal(str(tier.price_output))

    total_cost = prompt_cost + completion_cost
    return float(total_cost.quantize(Decimal("0.000001"), rounding=ROUND_UP))


def estimate_analysis_cost(tokens: int, tier: TierConfig) -> float:
    """Estimate the input cost of sending ``tokens`` to a tier."""
    cost = (Decimal(tokens) / TOKENS_PER_PRICE_UNIT) * Decimal(str(tier.price_input))
    return float(cost.quantize(Decimal("0.000001"), rounding=ROUND_UP))


def parse_cost_range(label: Optional[str]) -> Optional[CostRange]:
    """Parse a cost-range label.

    Two or more numbers give (min, max), a single number gives (n, n),
    anything else returns None.

    Examples:
        "$120-$300" -> CostRange(120, 300)
        "$1,000 - 2,500" -> CostRange(1000, 2500)
        "about $80" -> CostRange(80, 80)
    """
    if not label:
        return None

    numbers = [int(float(match.replace(",", ""))) for match in _NUMBER_PATTERN.findall(label)]
    if not numbers:
        return None
    if len(numbers) == 1:
        return CostRange(numbers[0], numbers[0])

    low, high = numbers[0], numbers[1]
    return CostRange(min(low, high), max(low, high))


def cost_bounds(label: Optional[str], complexity: int, cost_ranges: Dict[int, str]) -> Tuple[int, int]:
    """Dollar bounds for a result, falling back to the configured range for its complexity."""
    parsed = parse_cost_range(label)
    if parsed is None:
        parsed = parse_cost_range(cost_ranges.get(complexity))
    if parsed is None:
        return 0, 0
    return parsed.minimum, parsed.maximum
