"""
Tier scoring and load balancing.

Ranks tiers for a request by headroom, price, observed latency and how well
the tier suits the item's complexity, then hands back a primary tier plus
fallbacks for the cascade.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from issue_estimator.config.loader import TierConfig
from .errors import NoViableTierError
from .models import ComplexityHint, Priority
from .rate_window import RateWindow

logger = logging.getLogger(__name__)

CONTEXT_FILL_RATIO = 0.7
MAX_ERROR_RATE = 0.1
HIGH_UTILIZATION = 0.8
PRICE_CEILING = 0.5  # $/1M tokens at which the cost score bottoms out
LATENCY_CEILING = 15.0  # seconds
FAST_LATENCY_CEILING = 8.0  # seconds, high priority bonus
FALLBACK_COUNT = 2

CAPACITY_WEIGHT = 40
COST_WEIGHT = 20
LATENCY_WEIGHT = 20
COMPLEXITY_WEIGHT = 20
PRIORITY_WEIGHT = 15

BASE_LATENCY = {
    "fast": 2.0,
    "standard": 3.0,
    "slow": 5.0,
}

COMPLEXITY_MATCH = {
    "small": {ComplexityHint.LOW: 1.0, ComplexityHint.MEDIUM: 0.6, ComplexityHint.HIGH: 0.2},
    "regular": {ComplexityHint.LOW: 0.7, ComplexityHint.MEDIUM: 1.0, ComplexityHint.HIGH: 0.8},
    "large": {ComplexityHint.LOW: 0.3, ComplexityHint.MEDIUM: 0.7, ComplexityHint.HIGH: 1.0},
}


@dataclass
class TierLoad:
    """Live load and performance state of one tier."""
    tier: TierConfig
    current_usage: int = 0
    available: float = 0.0
    utilization: float = 0.0
    avg_latency: float = 3.0
    error_rate: float = 0.0
    last_error: Optional[str] = None


class LoadBalancer:
    """Selects tiers for requests and tracks their observed performance."""

    def __init__(self, tiers: Iterable[TierConfig], rate_window: RateWindow):
        self.rate_window = rate_window
        self._loads: Dict[str, TierLoad] = {}
        for tier in tiers:
            self._loads[tier.id] = TierLoad(
                tier=tier,
                avg_latency=BASE_LATENCY.get(tier.latency_class, 3.0),
            )
        self.refresh()

    def load(self, tier_id: str) -> TierLoad:
        if tier_id not in self._loads:
            raise ValueError(f"Unknown tier: {tier_id}")
        return self._loads[tier_id]

    def refresh(self) -> None:
        """Recompute usage, headroom and utilization from the rate window."""
        for tier_id, load in self._loads.items():
            limit = self.rate_window.limit(tier_id)
            usage = self.rate_window.current_usage(tier_id)
            load.current_usage = usage
            load.available = max(0.0, limit - usage)
            load.utilization = usage / limit if limit else 1.0

    def _context_fits(self, load: TierLoad, tokens: int) -> bool:
        return tokens <= load.tier.max_context * CONTEXT_FILL_RATIO

    def _is_viable(self, load: TierLoad, tokens: int) -> bool:
        return (
            self._context_fits(load, tokens)
            and load.available >= tokens * self.rate_window.request_multiplier
            and load.error_rate <= MAX_ERROR_RATE
        )

    def score(self, tier_id: str, tokens: int, complexity_hint: ComplexityHint, priority: Priority) -> float:
        """Score a tier for a request. Higher is better, never negative."""
        load = self.load(tier_id)
        tier = load.tier

        capacity_score = max(0.0, min(1.0, (load.available - tokens) / tier.tpm))
        cost_score = 1 - min(1.0, tier.average_price / PRICE_CEILING)
        latency_score = 1 - min(1.0, load.avg_latency / LATENCY_CEILING)
        match_score = COMPLEXITY_MATCH.get(tier.tier_class, {}).get(complexity_hint, 0.5)

        score = (
            capacity_score * CAPACITY_WEIGHT
            + cost_score * COST_WEIGHT
            + latency_score * LATENCY_WEIGHT
            + match_score * COMPLEXITY_WEIGHT
        )

        if priority is Priority.HIGH:
            score += (1 - min(1.0, load.avg_latency / FAST_LATENCY_CEILING)) * PRIORITY_WEIGHT
        elif priority is Priority.LOW:
            score += cost_score * PRIORITY_WEIGHT

        if load.utilization > HIGH_UTILIZATION:
            score *= 1 - (load.utilization - HIGH_UTILIZATION)
        if load.error_rate > MAX_ERROR_RATE:
            score *= 1 - load.error_rate

        return max(0.0, score)

    def select(
        self,
        estimated_tokens: int,
        complexity_hint: ComplexityHint = ComplexityHint.MEDIUM,
        priority: Priority = Priority.MEDIUM,
    ) -> Tuple[str, Tuple[str, ...]]:
        """Pick a primary tier and up to two fallbacks for a request.

        Args:
            estimated_tokens: Tokens the request is expected to send
            complexity_hint: Pre-analysis complexity guess
            priority: Item priority

        Returns:
            (primary tier id, fallback tier ids)

        Raises:
            NoViableTierError: If no tier can fit the request even when idle
        """
        self.refresh()
        loads = list(self._loads.values())

        viable = [load for load in loads if self._is_viable(load, estimated_tokens)]
        if not viable:
            relaxed = [
                load for load in loads
                if self._context_fits(load, estimated_tokens)
                and self.rate_window.fits(load.tier.id, estimated_tokens)
            ]
            if not relaxed:
                raise NoViableTierError(
                    f"No tier can accept a request of {estimated_tokens} tokens"
                )
            relaxed.sort(key=lambda load: load.available, reverse=True)
            logger.warning(
                "No tier currently viable for %d tokens, falling back to headroom order",
                estimated_tokens,
            )
            ids = [load.tier.id for load in relaxed]
            return ids[0], tuple(ids[1:])

        ranked: List[Tuple[float, TierLoad]] = [
            (self.score(load.tier.id, estimated_tokens, complexity_hint, priority), load)
            for load in viable
        ]
        ranked.sort(key=lambda pair: pair[0], reverse=True)

        primary = ranked[0][1].tier.id
        fallbacks = tuple(load.tier.id for _, load in ranked[1:1 + FALLBACK_COUNT])
        logger.debug(
            "Selected %s for %d tokens (%s/%s), fallbacks %s",
            primary, estimated_tokens, complexity_hint.value, priority.value, fallbacks,
        )
        return primary, fallbacks

    def record_performance(
        self,
        tier_id: str,
        elapsed: float,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        """Fold one invocation's latency and outcome into the tier's averages."""
        load = self._loads.get(tier_id)
        if load is None:
            return

        load.avg_latency = load.avg_latency * 0.8 + elapsed * 0.2
        if success:
            load.error_rate = load.error_rate * 0.95
            load.last_error = None
        else:
            load.error_rate = load.error_rate * 0.9 + 0.1
            load.last_error = error

    def system_status(self) -> Dict[str, Dict[str, Any]]:
        """Per-tier diagnostic snapshot."""
        self.refresh()
        return {
            tier_id: {
                "tier_class": load.tier.tier_class,
                "utilization": round(load.utilization * 100),
                "available_capacity": int(load.available),
                "current_usage": load.current_usage,
                "avg_latency": round(load.avg_latency, 2),
                "error_rate": round(load.error_rate * 100),
                "last_error": load.last_error,
            }
            for tier_id, load in self._loads.items()
        }
