"""
Data models for the analysis pipeline.

Work items come in from an external fetcher; results, strategies and
analyzed items are produced per run and never persisted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


CATEGORIES = ("bug", "feature", "documentation", "enhancement", "refactor")


class Priority(Enum):
    """Scheduling priority derived from labels, state and discussion volume."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ComplexityHint(Enum):
    """Coarse pre-analysis complexity guess used for tier matching."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class WorkItem:
    """Immutable issue supplied by the caller for one analysis run."""
    number: Optional[int]
    title: str
    body: str = ""
    labels: Tuple[str, ...] = ()
    comments: int = 0
    state: str = "open"
    created_at: str = ""
    url: str = ""

    @property
    def label_names(self) -> Tuple[str, ...]:
        """Labels lower-cased for keyword matching."""
        return tuple(label.lower() for label in self.labels)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkItem":
        """Build a WorkItem from a GitHub-API-shaped issue dict.

        Labels may be ``{"name": ...}`` dicts or plain strings.
        """
        labels = []
        for label in data.get("labels") or []:
            if isinstance(label, dict):
                name = label.get("name")
            else:
                name = label
            if name:
                labels.append(str(name))

        number = data.get("number")
        if number is None:
            number = data.get("id")
        return cls(
            number=int(number) if number is not None else None,
            title=str(data.get("title") or ""),
            body=str(data.get("body") or ""),
            labels=tuple(labels),
            comments=int(data.get("comments") or 0),
            state=str(data.get("state") or "open"),
            created_at=str(data.get("created_at") or ""),
            url=str(data.get("html_url") or data.get("url") or ""),
        )


@dataclass(frozen=True)
class AnalysisResult:
    """Validated analysis of one work item."""
    complexity: int
    estimated_cost: str
    category: str
    confidence: float
    key_factors: Tuple[str, ...] = ()
    potential_risks: Tuple[str, ...] = ()
    recommended_actions: Tuple[str, ...] = ()
    rationale: str = ""
    source: str = "model"  # "model" or "heuristic"

    def __post_init__(self):
        """Enforce the complexity and confidence bounds."""
        if not 1 <= self.complexity <= 5:
            raise ValueError("complexity must be between 1 and 5")
        if not 0.1 <= self.confidence <= 1.0:
            raise ValueError("confidence must be between 0.1 and 1.0")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "complexity": self.complexity,
            "estimated_cost": self.estimated_cost,
            "category": self.category,
            "confidence": self.confidence,
            "key_factors": list(self.key_factors),
            "potential_risks": list(self.potential_risks),
            "recommended_actions": list(self.recommended_actions),
            "ai_analysis": self.rationale,
            "source": self.source,
        }


@dataclass(frozen=True)
class AnalysisStrategy:
    """Per-item routing decision: tiers to try and whether to summarize first."""
    primary: str
    fallbacks: Tuple[str, ...]
    needs_summarization: bool
    estimated_tokens: int
    priority: Priority
    estimated_cost: float
    complexity_hint: ComplexityHint = ComplexityHint.MEDIUM
    emergency: bool = False

    @property
    def tiers(self) -> Tuple[str, ...]:
        """Primary followed by fallbacks, in cascade order."""
        return (self.primary,) + tuple(self.fallbacks)


@dataclass(frozen=True)
class AnalyzedItem:
    """A work item merged with its analysis for display or export."""
    item: WorkItem
    result: AnalysisResult
    tier_used: str
    summary_tokens: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "number": self.item.number,
            "title": self.item.title,
            "labels": list(self.item.labels),
            "state": self.item.state,
            "comments": self.item.comments,
            "created_at": self.item.created_at,
            "url": self.item.url,
            "tier_used": self.tier_used,
        }
        data.update(self.result.to_dict())
        return data


@dataclass
class ItemProgress:
    """Mutable progress of one item within a run."""
    title: str
    status: str = "pending"  # pending|summarizing|analyzing|complete|error
    tier: Optional[str] = None
    percent: int = 0
    summary_tokens: Optional[int] = None


@dataclass
class BatchInfo:
    current_batch: int = 0
    total_batches: int = 0
    completed_batches: int = 0


@dataclass
class BatchProgress:
    """Progress of a whole run, mutated by the orchestrator and read via snapshots."""
    total_items: int
    analyzed_items: int = 0
    stage: str = "pending"  # pending|analyzing|complete|cancelled
    items: Dict[int, ItemProgress] = field(default_factory=dict)
    batch: BatchInfo = field(default_factory=BatchInfo)

    def snapshot(self) -> Dict[str, Any]:
        """Plain-dict copy safe to hand to consumers."""
        return {
            "total_items": self.total_items,
            "analyzed_items": self.analyzed_items,
            "stage": self.stage,
            "batch": {
                "current_batch": self.batch.current_batch,
                "total_batches": self.batch.total_batches,
                "completed_batches": self.batch.completed_batches,
            },
            "items": {
                number: {
                    "title": progress.title,
                    "status": progress.status,
                    "tier": progress.tier,
                    "percent": progress.percent,
                    "summary_tokens": progress.summary_tokens,
                }
                for number, progress in self.items.items()
            },
        }
