"""
Per-item strategy selection.

Decides whether an item must be summarized before analysis and which tiers
to try, in order.
"""

import logging
from typing import Optional

from issue_estimator.config.loader import EstimatorConfig
from .balancer import CONTEXT_FILL_RATIO, LoadBalancer
from .errors import CancellationToken, NoViableTierError
from .models import AnalysisStrategy, ComplexityHint, Priority, WorkItem
from .pricing import estimate_analysis_cost
from .token_counter import estimate_tokens

logger = logging.getLogger(__name__)

SUMMARIZATION_THRESHOLD = 15000

HIGH_PRIORITY_LABELS = ("urgent", "critical", "blocker", "p0", "p1")
MEDIUM_PRIORITY_LABELS = ("bug", "fix", "p2")
COMPLEX_LABELS = ("complex", "difficult", "blocker", "critical")


def complexity_hint(item: WorkItem) -> ComplexityHint:
    """Keyword heuristic guessing complexity before any analysis."""
    score = 0
    title = item.title.lower()
    body = item.body.lower()
    labels = item.label_names

    if len(item.title) > 100:
        score += 1
    if "bug" in title or "fix" in title:
        score += 1
    if "feature" in title or "enhancement" in title:
        score += 1

    if len(item.body) > 1000:
        score += 2
    if "error" in body or "exception" in body:
        score += 1

    if item.comments > 5:
        score += 1
    if item.comments > 10:
        score += 1

    if any(keyword in label for label in labels for keyword in COMPLEX_LABELS):
        score += 2

    if score >= 5:
        return ComplexityHint.HIGH
    if score >= 3:
        return ComplexityHint.MEDIUM
    return ComplexityHint.LOW


def item_priority(item: WorkItem) -> Priority:
    """Priority from labels, then discussion volume on open items."""
    labels = item.label_names

    if any(keyword in label for label in labels for keyword in HIGH_PRIORITY_LABELS):
        return Priority.HIGH
    if item.state == "open" and item.comments > 10:
        return Priority.HIGH
    if any(keyword in label for label in labels for keyword in MEDIUM_PRIORITY_LABELS):
        return Priority.MEDIUM
    return Priority.LOW


class StrategySelector:
    """Builds an AnalysisStrategy for each work item."""

    def __init__(self, config: EstimatorConfig, balancer: LoadBalancer):
        self.config = config
        self.balancer = balancer

    def needs_summarization(self, raw_tokens: int) -> bool:
        largest = max(tier.max_context for tier in self.config.tier_catalog())
        return raw_tokens > largest * CONTEXT_FILL_RATIO or raw_tokens > SUMMARIZATION_THRESHOLD

    def select(self, item: WorkItem, cancel_token: Optional[CancellationToken] = None) -> AnalysisStrategy:
        """Select a strategy for an item. Never raises on routing failure.

        Args:
            item: Work item to route
            cancel_token: Checked before selection

        Returns:
            AnalysisStrategy with at least one tier
        """
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        raw_tokens = estimate_tokens(f"{item.title} {item.body}")
        needs_summary = self.needs_summarization(raw_tokens)
        tokens = min(self.config.analysis.max_issue_tokens, raw_tokens) if needs_summary else raw_tokens

        hint = complexity_hint(item)
        priority = item_priority(item)

        try:
            primary, fallbacks = self.balancer.select(tokens, hint, priority)
        except NoViableTierError as e:
            logger.warning("Using emergency strategy for #%s: %s", item.number, e)
            return self._emergency_strategy(tokens, needs_summary, hint)

        return AnalysisStrategy(
            primary=primary,
            fallbacks=fallbacks,
            needs_summarization=needs_summary,
            estimated_tokens=tokens,
            priority=priority,
            estimated_cost=estimate_analysis_cost(tokens, self.config.get_tier(primary)),
            complexity_hint=hint,
        )

    def _emergency_strategy(self, tokens: int, needs_summary: bool, hint: ComplexityHint) -> AnalysisStrategy:
        by_price = sorted(self.config.tier_catalog(), key=lambda tier: tier.average_price)
        fitting = [tier for tier in by_price if tokens <= tier.max_context * CONTEXT_FILL_RATIO]
        primary = fitting[0] if fitting else by_price[0]

        return AnalysisStrategy(
            primary=primary.id,
            fallbacks=tuple(tier.id for tier in by_price if tier.id != primary.id),
            needs_summarization=needs_summary,
            estimated_tokens=tokens,
            priority=Priority.MEDIUM,
            estimated_cost=estimate_analysis_cost(tokens, primary),
            complexity_hint=hint,
            emergency=True,
        )
