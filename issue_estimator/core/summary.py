"""
Aggregate summary over analyzed items.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable

from .models import AnalyzedItem
from .pricing import cost_bounds, parse_cost_range

logger = logging.getLogger(__name__)


@dataclass
class AnalysisSummary:
    """Budget totals and distributions for a set of analyzed items."""
    total_items: int = 0
    total_budget_min: int = 0
    total_budget_max: int = 0
    complexity_distribution: Dict[int, int] = field(default_factory=dict)
    category_breakdown: Dict[str, int] = field(default_factory=dict)
    average_confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_items": self.total_items,
            "total_budget_min": self.total_budget_min,
            "total_budget_max": self.total_budget_max,
            "complexity_distribution": dict(self.complexity_distribution),
            "category_breakdown": dict(self.category_breakdown),
            "average_confidence": self.average_confidence,
        }


def calculate_summary(items: Iterable[AnalyzedItem], cost_ranges: Dict[int, str]) -> AnalysisSummary:
    """Sum cost bounds and count complexities and categories.

    Unparsable cost labels fall back to the configured range for the
    item's complexity.
    """
    summary = AnalysisSummary()
    confidence_total = 0.0

    for analyzed in items:
        result = analyzed.result
        summary.total_items += 1
        summary.complexity_distribution[result.complexity] = (
            summary.complexity_distribution.get(result.complexity, 0) + 1
        )
        summary.category_breakdown[result.category] = summary.category_breakdown.get(result.category, 0) + 1

        if parse_cost_range(result.estimated_cost) is None:
            logger.warning(
                "Could not parse cost for #%s: %r, using complexity range",
                analyzed.item.number, result.estimated_cost,
            )
        low, high = cost_bounds(result.estimated_cost, result.complexity, cost_ranges)
        summary.total_budget_min += low
        summary.total_budget_max += high
        confidence_total += result.confidence

    if summary.total_items:
        summary.average_confidence = confidence_total / summary.total_items
    return summary
