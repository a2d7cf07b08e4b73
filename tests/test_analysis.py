"""
Unit tests for response parsing, validation and single-tier attempts.
"""

import asyncio
import json

import pytest

from issue_estimator.config.loader import DEFAULT_COST_RANGES, DEFAULT_TIERS
from issue_estimator.core.analysis import (
    AnalysisStage,
    AttemptStatus,
    parse_analysis_response,
    validate_analysis,
)
from issue_estimator.core.errors import (
    AnalysisCancelled,
    CancellationToken,
    CapacityError,
    InvocationError,
    ParseFailureError,
)
from issue_estimator.core.rate_window import RateWindow

from conftest import VALID_ANALYSIS, FakeCompletionClient

SMALL = DEFAULT_TIERS["small"].id
LARGE = DEFAULT_TIERS["large"].id


class TestParseAnalysisResponse:
    """Test tolerant JSON decoding."""

    def test_plain_json(self):
        assert parse_analysis_response(json.dumps(VALID_ANALYSIS)) == VALID_ANALYSIS

    def test_fenced_json_with_surrounding_text(self):
        raw = "Here is my analysis:\n```json\n" + json.dumps(VALID_ANALYSIS) + "\n```\nHope this helps."

        assert parse_analysis_response(raw)["complexity"] == 3

    def test_leading_json_tag(self):
        assert parse_analysis_response("json\n" + json.dumps(VALID_ANALYSIS))["category"] == "Feature"

    def test_no_json_raises(self):
        with pytest.raises(ParseFailureError, match="no JSON object found"):
            parse_analysis_response("I cannot estimate this issue.")

    def test_broken_json_raises(self):
        with pytest.raises(ParseFailureError):
            parse_analysis_response('{"complexity": 3, "category": }')

    def test_empty_raises(self):
        with pytest.raises(ParseFailureError, match="Empty"):
            parse_analysis_response("")

    def test_non_object_raises(self):
        with pytest.raises(ParseFailureError, match="not a JSON object"):
            parse_analysis_response("[1, 2, 3]")


class TestValidateAnalysis:
    """Test normalization of decoded analyses."""

    def test_valid_analysis(self):
        result = validate_analysis(VALID_ANALYSIS, DEFAULT_COST_RANGES)

        assert result.complexity == 3
        assert result.category == "feature"
        assert result.confidence == 0.8
        assert result.key_factors == ("API integration",)
        assert result.rationale == "Moderate multi-component change"
        assert result.source == "model"

    def test_values_clamped(self):
        parsed = dict(VALID_ANALYSIS, complexity=9, confidence=3.5)
        result = validate_analysis(parsed)
        assert result.complexity == 5
        assert result.confidence == 1.0

        parsed = dict(VALID_ANALYSIS, complexity="0", confidence=0)
        result = validate_analysis(parsed)
        assert result.complexity == 1
        assert result.confidence == 0.1

    def test_defaults_for_optional_fields(self):
        parsed = {"complexity": 2, "estimated_cost": "$50-$120", "category": "bug", "confidence": 0.5}

        result = validate_analysis(parsed)

        assert result.key_factors == ()
        assert result.potential_risks == ()
        assert result.recommended_actions == ()
        assert result.rationale == "AI analysis provided"

    def test_empty_cost_uses_complexity_range(self):
        parsed = dict(VALID_ANALYSIS, complexity=4, estimated_cost="")

        assert validate_analysis(parsed, DEFAULT_COST_RANGES).estimated_cost == "$300-$600"

    def test_missing_field_raises(self):
        parsed = dict(VALID_ANALYSIS)
        del parsed["confidence"]

        with pytest.raises(ParseFailureError, match="Missing required field: confidence"):
            validate_analysis(parsed)

    def test_non_numeric_complexity_raises(self):
        with pytest.raises(ParseFailureError, match="Invalid numeric field"):
            validate_analysis(dict(VALID_ANALYSIS, complexity="hard"))

    def test_infinite_values_raise(self):
        with pytest.raises(ParseFailureError, match="not finite"):
            validate_analysis(dict(VALID_ANALYSIS, complexity=float("inf")))
        with pytest.raises(ParseFailureError, match="not finite"):
            validate_analysis(dict(VALID_ANALYSIS, confidence=float("-inf")))
        with pytest.raises(ParseFailureError, match="not finite"):
            validate_analysis(dict(VALID_ANALYSIS, confidence=float("nan")))

    def test_huge_integer_complexity_raises(self):
        with pytest.raises(ParseFailureError, match="Invalid numeric field"):
            validate_analysis(dict(VALID_ANALYSIS, complexity=10 ** 400))

    def test_scalar_list_field_wrapped(self):
        result = validate_analysis(dict(VALID_ANALYSIS, key_factors=5))

        assert result.key_factors == ("5",)


class SlowClient(FakeCompletionClient):
    async def complete(self, tier, messages, max_tokens, temperature=0.1, json_mode=False):
        await asyncio.sleep(1)
        return await super().complete(tier, messages, max_tokens, temperature, json_mode)


class TestAnalysisStage:
    """Test single-tier attempts against a fake client."""

    def _stage(self, config, client, fake_clock, **window_kwargs):
        window = RateWindow(config.tier_catalog(), clock=fake_clock, sleep=fake_clock.sleep, **window_kwargs)
        return AnalysisStage(config, client, window), window

    @pytest.mark.asyncio
    async def test_success(self, config, fake_clock):
        client = FakeCompletionClient()
        stage, window = self._stage(config, client, fake_clock)

        outcome = await stage.attempt(SMALL, "ISSUE #1: Add export")

        assert outcome.status is AttemptStatus.SUCCESS
        assert outcome.invoked is True
        assert outcome.result.category == "feature"
        assert client.calls[0]["json_mode"] is True
        assert client.calls[0]["max_tokens"] == DEFAULT_TIERS["small"].max_completion
        assert window.current_usage(SMALL) > DEFAULT_TIERS["small"].max_completion

    @pytest.mark.asyncio
    async def test_fenced_reply_accepted(self, config, fake_clock):
        reply = "```json\n" + json.dumps(VALID_ANALYSIS) + "\n```"
        stage, _ = self._stage(config, FakeCompletionClient(default=reply), fake_clock)

        outcome = await stage.attempt(SMALL, "content")

        assert outcome.status is AttemptStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_context_too_large_not_invoked(self, config, fake_clock):
        client = FakeCompletionClient()
        stage, window = self._stage(config, client, fake_clock)

        outcome = await stage.attempt(SMALL, "x" * 40000)

        assert outcome.status is AttemptStatus.CONTEXT_TOO_LARGE
        assert outcome.invoked is False
        assert client.calls == []
        assert window.current_usage(SMALL) == 0

    @pytest.mark.asyncio
    async def test_window_capacity_not_invoked(self, config, fake_clock):
        client = FakeCompletionClient()
        stage, window = self._stage(config, client, fake_clock, max_wait_cycles=0)
        await window.reserve(SMALL, 5000)

        outcome = await stage.attempt(SMALL, "content")

        assert outcome.status is AttemptStatus.CAPACITY
        assert outcome.invoked is False
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_service_rate_limit(self, config, fake_clock):
        client = FakeCompletionClient(replies={SMALL: [CapacityError("429", tier_id=SMALL)]})
        stage, _ = self._stage(config, client, fake_clock)

        outcome = await stage.attempt(SMALL, "content")

        assert outcome.status is AttemptStatus.CAPACITY
        assert outcome.invoked is True

    @pytest.mark.asyncio
    async def test_parse_failure(self, config, fake_clock):
        stage, _ = self._stage(config, FakeCompletionClient(default="not json at all"), fake_clock)

        outcome = await stage.attempt(SMALL, "content")

        assert outcome.status is AttemptStatus.PARSE_FAILURE
        assert outcome.invoked is True
        assert outcome.result is None

    @pytest.mark.asyncio
    async def test_overflowing_reply_is_parse_failure(self, config, fake_clock):
        reply = json.dumps(VALID_ANALYSIS).replace('"complexity": 3', '"complexity": 1e400')
        stage, _ = self._stage(config, FakeCompletionClient(default=reply), fake_clock)

        outcome = await stage.attempt(SMALL, "content")

        assert outcome.status is AttemptStatus.PARSE_FAILURE
        assert outcome.invoked is True
        assert "not finite" in outcome.error

    @pytest.mark.asyncio
    async def test_invocation_error(self, config, fake_clock):
        client = FakeCompletionClient(replies={LARGE: [InvocationError("502", tier_id=LARGE)]})
        stage, _ = self._stage(config, client, fake_clock)

        outcome = await stage.attempt(LARGE, "content")

        assert outcome.status is AttemptStatus.INVOCATION_ERROR
        assert "502" in outcome.error

    @pytest.mark.asyncio
    async def test_timeout_is_invocation_error(self, config, fake_clock):
        config = config.with_analysis(request_timeout=0.01)
        stage, _ = self._stage(config, SlowClient(), fake_clock)

        outcome = await stage.attempt(SMALL, "content")

        assert outcome.status is AttemptStatus.INVOCATION_ERROR
        assert "Timed out" in outcome.error

    @pytest.mark.asyncio
    async def test_cancel_during_invocation(self, config, fake_clock):
        token = CancellationToken()
        stage, _ = self._stage(config, SlowClient(), fake_clock)

        async def cancel_soon():
            await asyncio.sleep(0.01)
            token.cancel()

        canceller = asyncio.ensure_future(cancel_soon())
        with pytest.raises(AnalysisCancelled):
            await stage.attempt(SMALL, "content", token)
        await canceller
