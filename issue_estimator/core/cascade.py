"""
Fallback cascade.

Walks an item's tier list, reacting to each tagged attempt outcome, and
falls back to the keyword heuristic once every tier has been exhausted.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from issue_estimator.config.loader import TierConfig
from .analysis import AnalysisStage, AttemptOutcome, AttemptStatus
from .balancer import LoadBalancer
from .errors import AnalysisCancelled, CancellationToken
from .heuristics import heuristic_analysis, offline_analysis
from .models import AnalysisResult, AnalysisStrategy, WorkItem

logger = logging.getLogger(__name__)

HEURISTIC_TIER = "heuristic"
OFFLINE_TIER = "offline"


@dataclass
class CascadeResult:
    """Outcome of a cascade run. ``result`` is None only when cancelled."""
    result: Optional[AnalysisResult]
    tier_used: Optional[str]
    attempts: List[AttemptOutcome] = field(default_factory=list)
    cancelled: bool = False


class FallbackCascade:
    """Tries tiers in strategy order until one produces a valid analysis."""

    def __init__(
        self,
        stage: AnalysisStage,
        balancer: LoadBalancer,
        tiers: Iterable[TierConfig],
        cost_ranges: Dict[int, str],
        max_capacity_retries: int = 2,
    ):
        self.stage = stage
        self.balancer = balancer
        self.tiers = {tier.id: tier for tier in tiers}
        self.cost_ranges = cost_ranges
        self.max_capacity_retries = max_capacity_retries

    def _larger_context_tier(self, current: str, tried: set) -> Optional[str]:
        current_context = self.tiers[current].max_context
        larger = [
            tier for tier in self.tiers.values()
            if tier.id not in tried and tier.max_context > current_context
        ]
        if not larger:
            return None
        return min(larger, key=lambda tier: tier.max_context).id

    async def run(
        self,
        item: WorkItem,
        content: str,
        strategy: AnalysisStrategy,
        cancel_token: Optional[CancellationToken] = None,
        on_attempt: Optional[Callable[[str], None]] = None,
    ) -> CascadeResult:
        """Analyze ``content`` following the strategy's tier order.

        Args:
            item: Item being analyzed, used for the heuristic fallback
            content: Text to analyze (summarized or raw)
            strategy: Tier order to follow
            cancel_token: Checked before every attempt
            on_attempt: Called with the tier id before each attempt

        Returns:
            CascadeResult; a heuristic result when every tier failed
        """
        queue = deque(tier_id for tier_id in dict.fromkeys(strategy.tiers) if tier_id in self.tiers)
        tried = set()
        attempts: List[AttemptOutcome] = []
        capacity_retries: Dict[str, int] = {}

        try:
            while queue:
                tier_id = queue.popleft()
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                tried.add(tier_id)

                if on_attempt is not None:
                    on_attempt(tier_id)

                outcome = await self.stage.attempt(tier_id, content, cancel_token)
                attempts.append(outcome)

                if outcome.invoked:
                    self.balancer.record_performance(
                        tier_id, outcome.elapsed, outcome.succeeded, outcome.error,
                    )

                if outcome.succeeded:
                    return CascadeResult(result=outcome.result, tier_used=tier_id, attempts=attempts)

                if outcome.status is AttemptStatus.CONTEXT_TOO_LARGE:
                    larger = self._larger_context_tier(tier_id, tried)
                    if larger is not None:
                        logger.info("Escalating #%s from %s to larger context %s", item.number, tier_id, larger)
                        if larger in queue:
                            queue.remove(larger)
                        queue.appendleft(larger)

                elif outcome.status is AttemptStatus.CAPACITY:
                    retries = capacity_retries.get(tier_id, 0)
                    if retries < self.max_capacity_retries:
                        capacity_retries[tier_id] = retries + 1
                        logger.info(
                            "Capacity exhausted on %s, retry %d/%d",
                            tier_id, retries + 1, self.max_capacity_retries,
                        )
                        queue.appendleft(tier_id)

                else:
                    logger.warning("Analysis failed with %s, trying next tier: %s", tier_id, outcome.error)

        except AnalysisCancelled:
            logger.info("Analysis of #%s cancelled", item.number)
            return CascadeResult(result=None, tier_used=None, attempts=attempts, cancelled=True)

        logger.warning("All tiers failed for #%s, using heuristic analysis", item.number)
        return CascadeResult(
            result=heuristic_analysis(item, self.cost_ranges),
            tier_used=HEURISTIC_TIER,
            attempts=attempts,
        )


class OfflineCascade:
    """Stand-in for FallbackCascade when no completion service is configured.

    Every item gets the keyword analysis; no tier is invoked.
    """

    def __init__(self, cost_ranges: Dict[int, str]):
        self.cost_ranges = cost_ranges

    async def run(
        self,
        item: WorkItem,
        content: str,
        strategy: AnalysisStrategy,
        cancel_token: Optional[CancellationToken] = None,
        on_attempt: Optional[Callable[[str], None]] = None,
    ) -> CascadeResult:
        if cancel_token is not None and cancel_token.cancelled:
            return CascadeResult(result=None, tier_used=None, cancelled=True)
        if on_attempt is not None:
            on_attempt(OFFLINE_TIER)
        logger.debug("Offline analysis for #%s", item.number)
        return CascadeResult(result=offline_analysis(item, self.cost_ranges), tier_used=OFFLINE_TIER)
