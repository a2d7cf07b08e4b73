"""
Unit tests for per-item strategy selection.
"""

import pytest

from issue_estimator.config.loader import DEFAULT_TIERS
from issue_estimator.core.balancer import LoadBalancer
from issue_estimator.core.errors import AnalysisCancelled, CancellationToken
from issue_estimator.core.models import ComplexityHint, Priority, WorkItem
from issue_estimator.core.rate_window import RateWindow
from issue_estimator.core.strategy import StrategySelector, complexity_hint, item_priority
from issue_estimator.core.token_counter import estimate_tokens

SMALL = DEFAULT_TIERS["small"].id
REGULAR = DEFAULT_TIERS["regular"].id
LARGE = DEFAULT_TIERS["large"].id


@pytest.fixture
def balancer(fake_clock):
    window = RateWindow(DEFAULT_TIERS.values(), clock=fake_clock, sleep=fake_clock.sleep)
    return LoadBalancer(DEFAULT_TIERS.values(), window)


@pytest.fixture
def selector(config, balancer):
    return StrategySelector(config, balancer)


class TestStrategySelection:
    """Test routing decisions for whole items."""

    def test_short_item_goes_to_small_tier(self, selector):
        item = WorkItem(number=1, title="Fix typo in README", body="x" * 196)

        strategy = selector.select(item)

        assert strategy.primary == SMALL
        assert strategy.needs_summarization is False
        assert strategy.estimated_tokens == estimate_tokens(f"{item.title} {item.body}")
        assert strategy.emergency is False
        assert strategy.priority is Priority.LOW

    def test_huge_item_needs_summarization(self, selector):
        item = WorkItem(number=2, title="Huge log dump", body="y" * 80000)

        strategy = selector.select(item)

        expected = estimate_tokens(f"{item.title} {item.body}")
        assert strategy.needs_summarization is True
        assert strategy.estimated_tokens == expected
        assert 20000 <= strategy.estimated_tokens < 25000
        # cheapest tier whose context holds 20k tokens
        assert strategy.primary == REGULAR
        assert strategy.fallbacks == (SMALL, LARGE)
        assert strategy.emergency is True
        assert strategy.priority is Priority.MEDIUM

    def test_selection_tokens_capped(self, selector):
        item = WorkItem(number=3, title="Giant", body="z" * 200000)

        strategy = selector.select(item)

        assert strategy.needs_summarization is True
        assert strategy.estimated_tokens == 25000

    def test_emergency_prefers_cheapest_context_fit(self, selector):
        # 14000 tokens: no summary, too big for every quota, fits regular context
        item = WorkItem(number=4, title="Medium", body="m" * (14000 * 4 - 7))

        strategy = selector.select(item)

        assert strategy.needs_summarization is False
        assert strategy.emergency is True
        assert strategy.primary == REGULAR
        assert strategy.fallbacks == (SMALL, LARGE)

    def test_all_tiers_erroring_still_routes(self, selector, balancer):
        for tier_id in (SMALL, REGULAR, LARGE):
            for _ in range(3):
                balancer.record_performance(tier_id, 1.0, success=False)

        strategy = selector.select(WorkItem(number=5, title="Anything"))

        assert strategy.tiers
        assert set(strategy.tiers) <= {SMALL, REGULAR, LARGE}

    def test_cancelled_token_raises(self, selector):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(AnalysisCancelled):
            selector.select(WorkItem(number=6, title="x"), token)


class TestHeuristics:
    """Test complexity hint and priority heuristics."""

    def test_plain_item_is_low(self):
        assert complexity_hint(WorkItem(number=1, title="Update copy")) is ComplexityHint.LOW

    def test_medium_complexity(self):
        item = WorkItem(number=1, title="Fix crash", body="Raises an exception " + "a" * 1000)
        # fix +1, long body +2, exception +1
        assert complexity_hint(item) is ComplexityHint.MEDIUM

    def test_labels_and_comments(self):
        item = WorkItem(number=1, title="Feature request", labels=("Complex",), comments=3)
        # feature +1, complex label +2
        assert complexity_hint(item) is ComplexityHint.MEDIUM

    def test_priority_from_labels(self):
        assert item_priority(WorkItem(number=1, title="x", labels=("P1",))) is Priority.HIGH
        assert item_priority(WorkItem(number=1, title="x", labels=("bug",))) is Priority.MEDIUM
        assert item_priority(WorkItem(number=1, title="x")) is Priority.LOW

    def test_busy_open_item_is_high_priority(self):
        assert item_priority(WorkItem(number=1, title="x", comments=11)) is Priority.HIGH
        assert item_priority(WorkItem(number=1, title="x", comments=11, state="closed")) is Priority.LOW
