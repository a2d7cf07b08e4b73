"""
Per-tier sliding-window TPM throttling.

Each tier keeps the usage records of the trailing 60 seconds. A reservation
is granted when the window sum plus the request (scaled by a safety
multiplier) stays under the tier quota times a safety factor; otherwise the
caller is suspended until the oldest record leaves the window.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from issue_estimator.config.loader import TierConfig
from .errors import CancellationToken, CapacityError, guarded

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageRecord:
    """Tokens reserved on a tier at a point in time. Never mutated."""
    tier_id: str
    tokens: int
    timestamp: float


class RateWindow:
    """Sliding-window TPM limiter shared by every stage of a run."""

    def __init__(
        self,
        tiers: Iterable[TierConfig],
        window_seconds: float = 60.0,
        safety_factor: float = 0.9,
        request_multiplier: float = 1.2,
        wait_buffer: float = 1.0,
        max_wait_cycles: int = 3,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the window.

        Args:
            tiers: Tier catalog
            window_seconds: Length of the trailing window
            safety_factor: Fraction of the quota that may be used
            request_multiplier: Inflation applied to the requested tokens
            wait_buffer: Extra seconds slept past the oldest record's expiry
            max_wait_cycles: Waits allowed before a reservation gives up
            clock: Monotonic time source (seconds)
            sleep: Coroutine used to suspend the caller
        """
        self._tiers: Dict[str, TierConfig] = {tier.id: tier for tier in tiers}
        self._records: Dict[str, List[UsageRecord]] = {tier_id: [] for tier_id in self._tiers}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.window_seconds = window_seconds
        self.safety_factor = safety_factor
        self.request_multiplier = request_multiplier
        self.wait_buffer = wait_buffer
        self.max_wait_cycles = max_wait_cycles
        self._clock = clock
        self._sleep = sleep

    def _tier(self, tier_id: str) -> TierConfig:
        if tier_id not in self._tiers:
            raise ValueError(f"Unknown tier: {tier_id}")
        return self._tiers[tier_id]

    def _lock(self, tier_id: str) -> asyncio.Lock:
        # Created lazily so the lock binds to the running loop
        if tier_id not in self._locks:
            self._locks[tier_id] = asyncio.Lock()
        return self._locks[tier_id]

    def limit(self, tier_id: str) -> float:
        """Safety-adjusted quota for a tier."""
        return self._tier(tier_id).tpm * self.safety_factor

    def _prune(self, tier_id: str) -> List[UsageRecord]:
        cutoff = self._clock() - self.window_seconds
        recent = [record for record in self._records[tier_id] if record.timestamp > cutoff]
        self._records[tier_id] = recent
        return recent

    def current_usage(self, tier_id: str) -> int:
        """Sum of tokens reserved on a tier within the trailing window."""
        self._tier(tier_id)
        return sum(record.tokens for record in self._prune(tier_id))

    def records(self, tier_id: str) -> List[UsageRecord]:
        """In-window usage records, oldest first."""
        self._tier(tier_id)
        return list(self._prune(tier_id))

    def fits(self, tier_id: str, tokens: int) -> bool:
        """Whether one request of this size can ever be granted on an empty window."""
        return tokens * self.request_multiplier <= self.limit(tier_id)

    def reset(self, tier_id: str) -> None:
        """Forget all usage for a tier."""
        self._tier(tier_id)
        self._records[tier_id] = []

    async def reserve(
        self,
        tier_id: str,
        tokens: int,
        cancel_token: Optional[CancellationToken] = None,
    ) -> UsageRecord:
        """Reserve ``tokens`` on a tier, waiting for the window to drain if needed.

        A tier with no in-window usage always grants immediately, so an
        oversized single request cannot block forever.

        Args:
            tier_id: Tier to reserve on
            tokens: Tokens the request may consume
            cancel_token: Abandons any wait once fired

        Returns:
            The appended UsageRecord

        Raises:
            CapacityError: If the window did not drain within max_wait_cycles waits
            AnalysisCancelled: If cancelled while waiting
        """
        limit = self.limit(tier_id)

        async with self._lock(tier_id):
            waits = 0
            while True:
                recent = self._prune(tier_id)
                usage = sum(record.tokens for record in recent)
                projected = usage + tokens * self.request_multiplier

                logger.debug(
                    "TPM check for %s: %d + %d (x%.1f) = %.0f / %.0f",
                    tier_id, usage, tokens, self.request_multiplier, projected, limit,
                )

                if not recent or projected <= limit:
                    break

                if waits >= self.max_wait_cycles:
                    raise CapacityError(
                        f"TPM window for {tier_id} did not drain after {waits} waits",
                        tier_id=tier_id,
                        invoked=False,
                    )

                wait_time = max(0.0, recent[0].timestamp + self.window_seconds - self._clock()) + self.wait_buffer
                logger.info("TPM limit approaching for %s, waiting %.1fs", tier_id, wait_time)
                await guarded(self._sleep(wait_time), cancel_token)
                waits += 1

            record = UsageRecord(tier_id=tier_id, tokens=tokens, timestamp=self._clock())
            self._records[tier_id].append(record)
            return record
