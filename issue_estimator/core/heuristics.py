"""
Keyword-based analysis used when every tier has failed or no completion
service is configured.
"""

from dataclasses import replace
from typing import Dict

from .models import AnalysisResult, WorkItem

HEURISTIC_CONFIDENCE = 0.7


def heuristic_analysis(item: WorkItem, cost_ranges: Dict[int, str]) -> AnalysisResult:
    """Estimate an item from its title, labels, body length and comment count.

    Later keyword matches override earlier ones, so an item titled
    "Refactor docs" is categorised as a refactor.
    """
    title = item.title.lower()
    labels = item.label_names

    complexity = 2
    category = "feature"

    if "bug" in title or "bug" in labels:
        category = "bug"
        complexity = 3 if "critical" in title else 1

    if "doc" in title or "documentation" in labels:
        category = "documentation"
        complexity = 1

    if "refactor" in title or "refactor" in labels:
        category = "refactor"
        complexity = 2

    if "enhancement" in title or "enhancement" in labels:
        category = "enhancement"
        complexity = 2

    if len(item.body) > 1000:
        complexity += 1
    if item.comments > 10:
        complexity += 1

    complexity = min(max(complexity, 1), 5)

    return AnalysisResult(
        complexity=complexity,
        estimated_cost=cost_ranges.get(complexity, ""),
        category=category,
        confidence=HEURISTIC_CONFIDENCE,
        key_factors=("Fallback analysis", "Basic heuristics"),
        potential_risks=("Analysis may be less accurate",),
        recommended_actions=("Review requirements carefully",),
        rationale=f"Fallback analysis: This appears to be a {category} issue.",
        source="heuristic",
    )


_COMPLEXITY_WORDS = ("minimal", "moderate", "significant", "high", "very high")


def offline_analysis(item: WorkItem, cost_ranges: Dict[int, str]) -> AnalysisResult:
    """Heuristic analysis presented as the result of an offline run."""
    result = heuristic_analysis(item, cost_ranges)
    return replace(
        result,
        rationale=(
            f"Offline analysis: This {result.category} issue has "
            f"{_COMPLEXITY_WORDS[result.complexity - 1]} complexity."
        ),
    )
