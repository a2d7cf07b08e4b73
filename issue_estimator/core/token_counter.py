"""
Token counting and usage tracking.

Approximates token counts locally with a fixed characters-per-token ratio;
no tokenizer or network call is involved.
"""

import math
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from issue_estimator.config.loader import TierConfig

CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation.

    Contains exact token counts as reported by the completion service.
    """
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def estimate_tokens(text: Optional[str]) -> int:
    """Estimate the token count of arbitrary text.

    Deterministic and side-effect free: ``ceil(len(text) / 4)``.

    Args:
        text: Any text (None counts as empty)

    Returns:
        Non-negative token estimate
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_request_tokens(messages: Iterable[Dict[str, str]], tier: TierConfig) -> int:
    """Estimate the TPM budget a request can consume on a tier.

    Input tokens of every message plus the tier's maximum completion size,
    since the output length is unknown until the call returns.
    """
    input_tokens = sum(estimate_tokens(message.get("content") or "") for message in messages)
    return input_tokens + tier.max_completion
