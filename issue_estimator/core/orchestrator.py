"""
Batch orchestration.

Processes work items sequentially in fixed-size batches, streaming progress
events as each item moves through strategy selection, summarization and the
fallback cascade. Cancellation ends the run early with a partial result.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Union

from issue_estimator.config.loader import EstimatorConfig
from .analysis import AnalysisStage
from .balancer import LoadBalancer
from .cascade import HEURISTIC_TIER, FallbackCascade, OfflineCascade
from .errors import AnalysisCancelled, CancellationToken
from .heuristics import heuristic_analysis
from .models import AnalyzedItem, BatchProgress, ItemProgress, WorkItem
from .rate_window import RateWindow
from .strategy import StrategySelector
from .summarizer import Summarizer, build_issue_content
from .summary import AnalysisSummary, calculate_summary
from .token_counter import estimate_tokens

logger = logging.getLogger(__name__)


class EventType(Enum):
    PROGRESS = "progress"
    BATCH_START = "batch_start"
    BATCH_COMPLETE = "batch_complete"
    PARTIAL_RESULT = "partial_result"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ProgressEvent:
    """One streamed event. ``payload`` holds snapshots, never live state."""
    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchResult:
    """Final outcome of a run."""
    items: List[AnalyzedItem]
    summary: AnalysisSummary
    cancelled: bool = False
    progress: Dict[str, Any] = field(default_factory=dict)


class BatchOrchestrator:
    """Runs a list of work items through the pipeline."""

    def __init__(
        self,
        config: EstimatorConfig,
        selector: StrategySelector,
        summarizer: Summarizer,
        cascade: Union[FallbackCascade, OfflineCascade],
    ):
        self.config = config
        self.selector = selector
        self.summarizer = summarizer
        self.cascade = cascade

    def _prepare(self, items: Sequence[WorkItem]) -> List[WorkItem]:
        prepared = []
        for item in items:
            if item.number is None:
                logger.warning("Skipping item without identifier: %r", item.title)
                continue
            prepared.append(item)
        return sorted(prepared, key=lambda item: item.number)

    def _results_payload(self, results: List[AnalyzedItem], state: BatchProgress, **extra) -> Dict[str, Any]:
        payload = {
            "items": list(results),
            "summary": calculate_summary(results, self.config.cost_ranges),
            "progress": state.snapshot(),
        }
        payload.update(extra)
        return payload

    async def run(
        self,
        items: Sequence[WorkItem],
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[ProgressEvent]:
        """Analyze ``items``, yielding progress events.

        The stream always ends with a ``complete`` event, also when the run
        was cancelled.

        Args:
            items: Work items to analyze
            cancel_token: Checked before each batch, item and tier attempt
        """
        token = cancel_token or CancellationToken()
        work = self._prepare(items)
        batch_size = self.config.analysis.batch_size
        batches = [work[i:i + batch_size] for i in range(0, len(work), batch_size)]

        state = BatchProgress(total_items=len(work), stage="analyzing")
        state.batch.total_batches = len(batches)
        for item in work:
            state.items[item.number] = ItemProgress(title=item.title)

        results: List[AnalyzedItem] = []
        cancelled = False
        logger.info("Analyzing %d items in %d batches", len(work), len(batches))

        yield ProgressEvent(EventType.PROGRESS, state.snapshot())

        try:
            for batch_index, batch in enumerate(batches):
                token.raise_if_cancelled()
                state.batch.current_batch = batch_index + 1
                yield ProgressEvent(EventType.BATCH_START, {
                    "batch": batch_index + 1,
                    "total_batches": len(batches),
                    "items": [item.number for item in batch],
                })

                for index, item in enumerate(batch):
                    token.raise_if_cancelled()
                    async for event in self._process_item(item, state, results, token):
                        yield event

                    if index < len(batch) - 1 and await token.sleep(self.config.analysis.request_delay):
                        token.raise_if_cancelled()

                state.batch.completed_batches += 1
                yield ProgressEvent(EventType.BATCH_COMPLETE, {
                    "batch": batch_index + 1,
                    "analyzed_items": state.analyzed_items,
                })
                yield ProgressEvent(EventType.PARTIAL_RESULT, self._results_payload(results, state))

                if batch_index < len(batches) - 1 and await token.sleep(self.config.analysis.batch_delay):
                    token.raise_if_cancelled()
        except AnalysisCancelled:
            cancelled = True
            logger.info("Analysis cancelled after %d of %d items", state.analyzed_items, state.total_items)

        state.stage = "cancelled" if cancelled else "complete"
        yield ProgressEvent(EventType.PROGRESS, state.snapshot())
        yield ProgressEvent(EventType.COMPLETE, self._results_payload(results, state, cancelled=cancelled))

    async def _process_item(
        self,
        item: WorkItem,
        state: BatchProgress,
        results: List[AnalyzedItem],
        token: CancellationToken,
    ) -> AsyncIterator[ProgressEvent]:
        entry = state.items[item.number]

        try:
            strategy = self.selector.select(item, token)

            entry.status = "summarizing"
            entry.percent = 25
            yield ProgressEvent(EventType.PROGRESS, state.snapshot())

            if strategy.needs_summarization:
                content = await self.summarizer.summarize(item, token)
                entry.summary_tokens = estimate_tokens(content)
            else:
                content = build_issue_content(item)
            entry.percent = 50
            yield ProgressEvent(EventType.PROGRESS, state.snapshot())

            entry.status = "analyzing"
            entry.percent = 75
            entry.tier = strategy.primary
            yield ProgressEvent(EventType.PROGRESS, state.snapshot())

            def on_attempt(tier_id: str) -> None:
                entry.tier = tier_id

            outcome = await self.cascade.run(item, content, strategy, token, on_attempt)
            if outcome.cancelled:
                raise AnalysisCancelled("Analysis cancelled")
            result, tier_used = outcome.result, outcome.tier_used
        except AnalysisCancelled:
            raise
        except Exception:
            logger.exception("Unexpected failure analyzing #%s, using heuristic analysis", item.number)
            try:
                result, tier_used = heuristic_analysis(item, self.config.cost_ranges), HEURISTIC_TIER
            except Exception:
                logger.exception("Heuristic analysis failed for #%s", item.number)
                entry.status = "error"
                yield ProgressEvent(EventType.PROGRESS, state.snapshot())
                return

        results.append(AnalyzedItem(
            item=item,
            result=result,
            tier_used=tier_used,
            summary_tokens=entry.summary_tokens,
        ))
        entry.status = "complete"
        entry.percent = 100
        entry.tier = tier_used
        state.analyzed_items += 1
        logger.info("Completed #%s with %s", item.number, tier_used)
        yield ProgressEvent(EventType.PROGRESS, state.snapshot())

    async def analyze(
        self,
        items: Sequence[WorkItem],
        cancel_token: Optional[CancellationToken] = None,
        on_event: Optional[Callable[[ProgressEvent], None]] = None,
    ) -> BatchResult:
        """Drain the event stream and return the final result."""
        final: Dict[str, Any] = {}
        async for event in self.run(items, cancel_token):
            if on_event is not None:
                on_event(event)
            if event.type is EventType.COMPLETE:
                final = event.payload

        return BatchResult(
            items=final.get("items", []),
            summary=final.get("summary") or AnalysisSummary(),
            cancelled=final.get("cancelled", False),
            progress=final.get("progress", {}),
        )


def build_pipeline(
    config: EstimatorConfig,
    client=None,
    rate_window: Optional[RateWindow] = None,
    max_capacity_retries: int = 2,
) -> BatchOrchestrator:
    """Wire every pipeline service from one configuration.

    Args:
        config: Validated estimator configuration
        client: Completion client exposing ``async complete(tier, messages, ...)``;
            None runs offline with keyword analysis only
        rate_window: Shared TPM window; a fresh one is created if omitted
        max_capacity_retries: Same-tier retries after a capacity outcome

    Returns:
        Ready-to-run BatchOrchestrator
    """
    tiers = config.tier_catalog()
    rate_window = rate_window or RateWindow(tiers)
    balancer = LoadBalancer(tiers, rate_window)
    if client is None:
        logger.warning("No completion client configured, using offline analysis")
        cascade = OfflineCascade(config.cost_ranges)
    else:
        stage = AnalysisStage(config, client, rate_window)
        cascade = FallbackCascade(stage, balancer, tiers, config.cost_ranges, max_capacity_retries)
    return BatchOrchestrator(
        config=config,
        selector=StrategySelector(config, balancer),
        summarizer=Summarizer(config, client, rate_window),
        cascade=cascade,
    )
