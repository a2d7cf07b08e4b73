"""
Summarization stage.

Shrinks oversized items before analysis: local noise stripping and section
extraction first, then a digest from the cheapest tier. Failure here never
fails the item; the locally trimmed text is used instead.
"""

import asyncio
import logging
import re
from typing import List, Optional

from issue_estimator.config.loader import EstimatorConfig, TierConfig, summarization_system_prompt
from .errors import AnalysisError, CancellationToken, guarded
from .models import WorkItem
from .rate_window import RateWindow
from .token_counter import estimate_request_tokens, estimate_tokens

logger = logging.getLogger(__name__)

OMITTED_MARKER = "...[content omitted]..."
TRUNCATED_MARKER = "...[Content truncated due to length]"

_NOISE_PATTERNS = (
    (re.compile(r"```[\s\S]*?```"), " [Code/logs removed] "),
    (re.compile(r"\s+at\s+[^\n]+(?:\n\s+at\s+[^\n]+)*"), " [Stack trace removed] "),
    (re.compile(r"\b[0-9a-f]{16,}\b", re.IGNORECASE), "[hex]"),
    (re.compile(r"\b\S{50,}\b"), "[long_string]"),
    (re.compile(r"\n{3,}"), "\n\n"),
    (re.compile(r"\s{2,}"), " "),
)

# Ordered by importance
_KEY_SECTION_PATTERNS = (
    re.compile(r"(problem|issue|bug|error|what's wrong)[\s:]*\n?([^\n]{50,400})", re.IGNORECASE),
    re.compile(r"(steps? to reproduce|reproduce|reproduction)[\s:]*\n?([\s\S]{50,800})", re.IGNORECASE),
    re.compile(r"(expected|actual|current behavior)[\s:]*\n?([^\n]{30,300})", re.IGNORECASE),
    re.compile(r"(error|exception|fail)[\s:]*\n?([^\n]{20,200})", re.IGNORECASE),
    re.compile(r"^([^\n]{100,500})"),
)
MAX_KEY_SECTIONS = 3


def build_issue_content(item: WorkItem) -> str:
    """Render an item as the plain-text block sent to the tiers."""
    labels = ", ".join(item.labels) or "None"
    return "\n".join([
        f"ISSUE #{item.number}: {item.title}",
        f"LABELS: {labels}",
        f"COMMENTS: {item.comments}",
        f"STATE: {item.state}",
        f"CREATED: {item.created_at}",
        f"DESCRIPTION: {item.body or 'No description provided'}",
    ])


def remove_noise(text: str) -> str:
    """Drop code fences, stack traces, hashes and long tokens; collapse whitespace."""
    for pattern, replacement in _NOISE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text.strip()


def extract_key_sections(text: str, max_chars: int) -> str:
    """Keep up to three important sections, or the head and tail of the text."""
    sections: List[str] = []
    length = 0

    for pattern in _KEY_SECTION_PATTERNS:
        for match in pattern.finditer(text):
            groups = match.groups()
            content = (groups[1] if len(groups) > 1 and groups[1] else groups[0] or "").strip()
            if content and length + len(content) <= max_chars * 0.9:
                sections.append(content)
                length += len(content)

    if sections:
        return "Key issue details:\n\n" + "\n\n".join(sections[:MAX_KEY_SECTIONS])

    head = text[:int(max_chars * 0.6)]
    tail = text[max(0, len(text) - int(max_chars * 0.3)):]
    return f"{head}\n\n{OMITTED_MARKER}\n\n{tail}"


def smart_trim(content: str, max_chars: int) -> str:
    """Compact ``content`` to at most ``max_chars`` characters.

    Applies noise removal, then key-section extraction, then hard
    truncation, stopping as soon as the text fits.
    """
    if len(content) <= max_chars:
        return content

    logger.debug("Trimming content from %d to %d chars", len(content), max_chars)
    cleaned = remove_noise(content)
    if len(cleaned) > max_chars:
        cleaned = extract_key_sections(cleaned, max_chars)
    if len(cleaned) > max_chars:
        cleaned = cleaned[:max(0, max_chars - 100)] + "\n\n" + TRUNCATED_MARKER
    return cleaned


class Summarizer:
    """Produces analysis-ready text for an item, summarizing when it is too long."""

    def __init__(self, config: EstimatorConfig, client, rate_window: RateWindow):
        self.config = config
        self.client = client
        self.rate_window = rate_window

    @property
    def target_tokens(self) -> int:
        return self.config.analysis.summary_target_tokens

    def summarization_tier(self) -> TierConfig:
        """Cheapest tier by average price."""
        return min(self.config.tier_catalog(), key=lambda tier: tier.average_price)

    async def summarize(self, item: WorkItem, cancel_token: Optional[CancellationToken] = None) -> str:
        """Return text for analysis, no longer than needed.

        Content already within the target is returned unchanged and no tier
        is called. Without a client only the local compaction is applied.

        Raises:
            AnalysisCancelled: If cancelled while waiting or invoking
        """
        content = build_issue_content(item)
        current_tokens = estimate_tokens(content)
        target = self.target_tokens

        if current_tokens <= target:
            logger.debug("Issue #%s fits target (%d tokens)", item.number, current_tokens)
            return content

        logger.info("Summarizing issue #%s from %d to ~%d tokens", item.number, current_tokens, target)
        trimmed = smart_trim(content, target * 3)
        if self.client is None:
            logger.debug("No completion client, using locally compacted content for #%s", item.number)
            return trimmed

        tier = self.summarization_tier()
        messages = [
            {"role": "system", "content": summarization_system_prompt(self.config)},
            {
                "role": "user",
                "content": (
                    "Please create a concise technical summary of this GitHub issue "
                    f"for cost estimation analysis:\n\n{trimmed}"
                ),
            },
        ]

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        try:
            await self.rate_window.reserve(tier.id, estimate_request_tokens(messages, tier), cancel_token)
            response = await guarded(
                asyncio.wait_for(
                    self.client.complete(tier, messages, max_tokens=target, temperature=0.1),
                    timeout=self.config.analysis.request_timeout,
                ),
                cancel_token,
            )
        except (AnalysisError, asyncio.TimeoutError) as e:
            logger.warning("Summarization failed for issue #%s, using trimmed content: %s", item.number, e)
            return trimmed

        summary = (response.content or "").strip()
        if not summary:
            logger.warning("Empty summary for issue #%s, using trimmed content", item.number)
            return trimmed

        logger.info("Summary created for issue #%s: %d tokens", item.number, estimate_tokens(summary))
        return summary
