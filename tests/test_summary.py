"""
Unit tests for aggregate summaries and the heuristic fallback.
"""

import pytest

from issue_estimator.config.loader import DEFAULT_COST_RANGES
from issue_estimator.core.heuristics import heuristic_analysis, offline_analysis
from issue_estimator.core.models import AnalysisResult, AnalyzedItem, WorkItem
from issue_estimator.core.summary import calculate_summary


def _analyzed(number, complexity, cost, category, confidence) -> AnalyzedItem:
    return AnalyzedItem(
        item=WorkItem(number=number, title=f"Issue {number}"),
        result=AnalysisResult(
            complexity=complexity,
            estimated_cost=cost,
            category=category,
            confidence=confidence,
        ),
        tier_used="llama-3.1-8b-instant",
    )


class TestCalculateSummary:
    """Test budget totals and distributions."""

    def test_summary_of_two_items(self):
        items = [
            _analyzed(1, 1, "$20-$50", "bug", 0.8),
            _analyzed(2, 3, "$120-$300", "feature", 0.9),
        ]

        summary = calculate_summary(items, DEFAULT_COST_RANGES)

        assert summary.total_items == 2
        assert summary.total_budget_min == 140
        assert summary.total_budget_max == 350
        assert summary.complexity_distribution == {1: 1, 3: 1}
        assert summary.category_breakdown == {"bug": 1, "feature": 1}
        assert summary.average_confidence == pytest.approx(0.85)

    def test_unparsable_cost_uses_complexity_range(self):
        summary = calculate_summary([_analyzed(1, 2, "invalid-cost", "bug", 0.8)], DEFAULT_COST_RANGES)

        assert summary.total_budget_min == 50
        assert summary.total_budget_max == 120

    def test_single_value_cost(self):
        summary = calculate_summary([_analyzed(1, 2, "$75", "bug", 0.8)], DEFAULT_COST_RANGES)

        assert (summary.total_budget_min, summary.total_budget_max) == (75, 75)

    def test_empty(self):
        summary = calculate_summary([], DEFAULT_COST_RANGES)

        assert summary.total_items == 0
        assert summary.average_confidence == 0.0
        assert summary.to_dict()["complexity_distribution"] == {}


class TestHeuristicAnalysis:
    """Test the keyword fallback analysis."""

    def test_default_is_simple_feature(self):
        result = heuristic_analysis(WorkItem(number=1, title="Add dark mode"), DEFAULT_COST_RANGES)

        assert result.category == "feature"
        assert result.complexity == 2
        assert result.estimated_cost == "$50-$120"
        assert result.confidence == 0.7
        assert result.source == "heuristic"
        assert result.rationale == "Fallback analysis: This appears to be a feature issue."

    def test_critical_bug(self):
        item = WorkItem(number=1, title="Critical bug in login")

        result = heuristic_analysis(item, DEFAULT_COST_RANGES)

        assert result.category == "bug"
        assert result.complexity == 3

    def test_bug_label(self):
        result = heuristic_analysis(WorkItem(number=1, title="Login", labels=("Bug",)), DEFAULT_COST_RANGES)

        assert result.category == "bug"
        assert result.complexity == 1

    def test_later_keywords_override(self):
        result = heuristic_analysis(WorkItem(number=1, title="Refactor docs"), DEFAULT_COST_RANGES)

        assert result.category == "refactor"

    def test_size_and_discussion_raise_complexity(self):
        item = WorkItem(number=1, title="Enhancement", body="b" * 1001, comments=11)

        result = heuristic_analysis(item, DEFAULT_COST_RANGES)

        assert result.category == "enhancement"
        assert result.complexity == 4
        assert result.key_factors == ("Fallback analysis", "Basic heuristics")

    def test_offline_analysis_rationale(self):
        item = WorkItem(number=1, title="Critical bug in login")

        result = offline_analysis(item, DEFAULT_COST_RANGES)

        assert result.complexity == 3
        assert result.rationale == "Offline analysis: This bug issue has significant complexity."
        assert result.estimated_cost == "$120-$300"
