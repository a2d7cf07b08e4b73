"""
Analysis stage.

One attempt = one tier: local context check, TPM reservation, timed
invocation, then parsing and validation of the structured reply. Failures
come back as tagged outcomes so the cascade can react per kind.
"""

import asyncio
import json
import logging
import math
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from issue_estimator.config.loader import EstimatorConfig, analysis_system_prompt
from .errors import (
    AnalysisError,
    CancellationToken,
    CapacityError,
    ContextTooLargeError,
    ParseFailureError,
    guarded,
)
from .models import AnalysisResult
from .rate_window import RateWindow
from .token_counter import estimate_request_tokens, estimate_tokens

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("complexity", "estimated_cost", "category", "confidence")
DEFAULT_RATIONALE = "AI analysis provided"

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_LEADING_JSON_PATTERN = re.compile(r"^json\s*", re.IGNORECASE)
_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


class AttemptStatus(Enum):
    SUCCESS = "success"
    CAPACITY = "capacity"
    CONTEXT_TOO_LARGE = "context_too_large"
    PARSE_FAILURE = "parse_failure"
    INVOCATION_ERROR = "invocation_error"


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of trying one tier once.

    ``invoked`` is False when the attempt stopped before reaching the
    completion service (context pre-check or reservation).
    """
    tier_id: str
    status: AttemptStatus
    elapsed: float = 0.0
    invoked: bool = False
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is AttemptStatus.SUCCESS


def parse_analysis_response(raw: Optional[str]) -> Dict[str, Any]:
    """Decode a JSON object from raw completion text.

    Tolerates markdown fences and a leading "json" tag, and falls back to
    the outermost ``{...}`` substring once.

    Raises:
        ParseFailureError: If no JSON object can be decoded
    """
    if not raw:
        raise ParseFailureError("Empty analysis response")

    cleaned = _FENCE_PATTERN.sub("", raw.strip()).replace("```", "")
    cleaned = _LEADING_JSON_PATTERN.sub("", cleaned.strip()).strip()

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.debug("Direct parse failed, extracting JSON object")
        match = _OBJECT_PATTERN.search(cleaned)
        if not match:
            raise ParseFailureError("Failed to parse analysis response: no JSON object found")
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ParseFailureError(f"Failed to parse analysis response: {e}") from e

    if not isinstance(parsed, dict):
        raise ParseFailureError("Analysis response is not a JSON object")
    return parsed


def _as_tuple(value: Any) -> tuple:
    if not value:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(entry) for entry in value)
    return (str(value),)


def validate_analysis(parsed: Dict[str, Any], cost_ranges: Optional[Dict[int, str]] = None) -> AnalysisResult:
    """Validate and normalize a decoded analysis.

    Complexity is clamped to 1..5 and confidence to 0.1..1.0; an empty cost
    label falls back to the configured range for the complexity.

    Raises:
        ParseFailureError: On missing fields or non-numeric values
    """
    missing = [name for name in REQUIRED_FIELDS if name not in parsed]
    if missing:
        raise ParseFailureError(f"Missing required field: {missing[0]}")

    try:
        raw_complexity = float(parsed["complexity"])
        confidence = float(parsed["confidence"])
    except (TypeError, ValueError, OverflowError) as e:
        raise ParseFailureError(f"Invalid numeric field in analysis: {e}") from e
    # NaN or infinity
    if not math.isfinite(raw_complexity) or not math.isfinite(confidence):
        raise ParseFailureError("Invalid numeric field in analysis: value is not finite")
    complexity = int(raw_complexity)

    complexity = min(max(complexity, 1), 5)
    confidence = min(max(confidence, 0.1), 1.0)

    estimated_cost = str(parsed["estimated_cost"] or "").strip()
    if not estimated_cost and cost_ranges:
        estimated_cost = cost_ranges.get(complexity, "")

    return AnalysisResult(
        complexity=complexity,
        estimated_cost=estimated_cost,
        category=str(parsed["category"]).strip().lower(),
        confidence=confidence,
        key_factors=_as_tuple(parsed.get("key_factors")),
        potential_risks=_as_tuple(parsed.get("potential_risks")),
        recommended_actions=_as_tuple(parsed.get("recommended_actions")),
        rationale=str(parsed.get("ai_analysis") or DEFAULT_RATIONALE),
        source="model",
    )


class AnalysisStage:
    """Runs single-tier analysis attempts."""

    def __init__(
        self,
        config: EstimatorConfig,
        client,
        rate_window: RateWindow,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.client = client
        self.rate_window = rate_window
        self._clock = clock

    def build_messages(self, content: str):
        return [
            {"role": "system", "content": analysis_system_prompt(self.config)},
            {
                "role": "user",
                "content": f"Please analyze this GitHub issue summary and provide a cost estimation:\n\n{content}",
            },
        ]

    async def attempt(
        self,
        tier_id: str,
        content: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AttemptOutcome:
        """Try to analyze ``content`` on one tier.

        Returns:
            AttemptOutcome tagged with what happened

        Raises:
            AnalysisCancelled: If cancelled while waiting or invoking
        """
        tier = self.config.get_tier(tier_id)
        messages = self.build_messages(content)
        max_tokens = min(self.config.analysis.analysis_max_tokens, tier.max_completion)

        input_tokens = sum(estimate_tokens(message["content"]) for message in messages)
        if input_tokens + max_tokens > tier.max_context:
            logger.info(
                "Content too large for %s: %d + %d > %d",
                tier_id, input_tokens, max_tokens, tier.max_context,
            )
            return AttemptOutcome(
                tier_id=tier_id,
                status=AttemptStatus.CONTEXT_TOO_LARGE,
                error=f"{input_tokens + max_tokens} tokens exceed context of {tier.max_context}",
            )

        try:
            await self.rate_window.reserve(tier_id, estimate_request_tokens(messages, tier), cancel_token)
        except CapacityError as e:
            return AttemptOutcome(tier_id=tier_id, status=AttemptStatus.CAPACITY, error=str(e))

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        start = self._clock()
        try:
            response = await guarded(
                asyncio.wait_for(
                    self.client.complete(tier, messages, max_tokens=max_tokens, temperature=0.1, json_mode=True),
                    timeout=self.config.analysis.request_timeout,
                ),
                cancel_token,
            )
        except CapacityError as e:
            return self._failure(tier_id, AttemptStatus.CAPACITY, start, e)
        except ContextTooLargeError as e:
            return self._failure(tier_id, AttemptStatus.CONTEXT_TOO_LARGE, start, e)
        except ParseFailureError as e:
            return self._failure(tier_id, AttemptStatus.PARSE_FAILURE, start, e)
        except AnalysisError as e:
            return self._failure(tier_id, AttemptStatus.INVOCATION_ERROR, start, e)
        except asyncio.TimeoutError:
            return self._failure(
                tier_id, AttemptStatus.INVOCATION_ERROR, start,
                f"Timed out after {self.config.analysis.request_timeout}s",
            )

        elapsed = self._clock() - start
        logger.info("Analysis with %s took %.2fs", tier_id, elapsed)

        try:
            result = validate_analysis(parse_analysis_response(response.content), self.config.cost_ranges)
        except ParseFailureError as e:
            logger.warning("Unparsable analysis from %s: %s", tier_id, e)
            return AttemptOutcome(
                tier_id=tier_id,
                status=AttemptStatus.PARSE_FAILURE,
                elapsed=elapsed,
                invoked=True,
                error=str(e),
            )

        return AttemptOutcome(
            tier_id=tier_id,
            status=AttemptStatus.SUCCESS,
            elapsed=elapsed,
            invoked=True,
            result=result,
        )

    def _failure(self, tier_id: str, status: AttemptStatus, start: float, error) -> AttemptOutcome:
        logger.warning("Analysis failed with %s (%s): %s", tier_id, status.value, error)
        return AttemptOutcome(
            tier_id=tier_id,
            status=status,
            elapsed=self._clock() - start,
            invoked=True,
            error=str(error),
        )
