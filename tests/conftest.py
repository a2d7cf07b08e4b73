"""
Shared fakes for pipeline tests.
"""

import json

import pytest

from issue_estimator.config.loader import default_config
from issue_estimator.core.models import WorkItem
from issue_estimator.core.token_counter import TokenUsage
from issue_estimator.sdk.openai_client import CompletionResponse

VALID_ANALYSIS = {
    "complexity": 3,
    "estimated_cost": "$120-$300",
    "category": "Feature",
    "confidence": 0.8,
    "key_factors": ["API integration"],
    "potential_risks": ["Scope creep"],
    "recommended_actions": ["Write a design doc"],
    "ai_analysis": "Moderate multi-component change",
}


class FakeClock:
    """Manually advanced monotonic clock with a matching sleep coroutine."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


class FakeCompletionClient:
    """Completion client returning scripted replies per tier.

    A reply may be a string (returned as content) or an exception instance
    (raised). The last reply for a tier repeats once the script runs out.
    """

    def __init__(self, replies=None, default=None):
        self.replies = {tier_id: list(script) for tier_id, script in (replies or {}).items()}
        self.default = default if default is not None else json.dumps(VALID_ANALYSIS)
        self.calls = []

    async def complete(self, tier, messages, max_tokens, temperature=0.1, json_mode=False):
        self.calls.append({
            "tier": tier.id,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "json_mode": json_mode,
        })
        script = self.replies.get(tier.id)
        if script:
            reply = script.pop(0) if len(script) > 1 else script[0]
        else:
            reply = self.default
        if isinstance(reply, Exception):
            raise reply
        return CompletionResponse(content=reply, usage=TokenUsage(prompt_tokens=100, completion_tokens=50))

    def tiers_called(self):
        return [call["tier"] for call in self.calls]


@pytest.fixture
def config():
    return default_config().with_analysis(request_delay=0.0, batch_delay=0.0)


@pytest.fixture
def fake_clock():
    return FakeClock()


def make_item(number=1, title="Add export button", body="Users want CSV export.", **kwargs) -> WorkItem:
    return WorkItem(number=number, title=title, body=body, **kwargs)
