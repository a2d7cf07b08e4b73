"""
Tier completion client.

Thin async wrapper over an OpenAI-compatible chat completions endpoint that
maps service failures onto the pipeline's error taxonomy.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI

from ..config.loader import TierConfig
from ..core.errors import CapacityError, ContextTooLargeError, InvocationError
from ..core.pricing import calculate_cost
from ..core.token_counter import TokenUsage

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"

_CONTEXT_MARKERS = ("context_length", "context length", "too large", "maximum context")


@dataclass(frozen=True)
class CompletionResponse:
    """Text and usage of one completion."""
    content: str
    usage: TokenUsage
    estimated_cost: float = 0.0
    request_id: Optional[str] = None


def _retry_after(error: openai.APIStatusError) -> Optional[float]:
    value = error.response.headers.get("retry-after") if error.response is not None else None
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def _is_context_error(error: openai.APIStatusError) -> bool:
    if error.status_code == 413:
        return True
    message = str(error).lower()
    return any(marker in message for marker in _CONTEXT_MARKERS)


class TierCompletionClient:
    """Async chat-completion client addressed by tier.

    All failures are raised as AnalysisError subclasses so callers can react
    per kind without importing the SDK.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        """Initialize the client.

        Args:
            api_key: Service API key (falls back to OPENAI_API_KEY)
            base_url: OpenAI-compatible endpoint (defaults to Groq)
            client: Pre-built AsyncOpenAI instance
        """
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=base_url or DEFAULT_BASE_URL)

    async def complete(
        self,
        tier: TierConfig,
        messages: List[Dict[str, str]],
        max_tokens: int,
        temperature: float = 0.1,
        json_mode: bool = False,
    ) -> CompletionResponse:
        """Create a chat completion on a tier.

        Args:
            tier: Tier to invoke
            messages: Chat messages (required)
            max_tokens: Completion cap
            temperature: Sampling temperature
            json_mode: Request a JSON object response

        Returns:
            CompletionResponse with content and usage

        Raises:
            ValueError: If messages is empty
            CapacityError: On rate limiting
            ContextTooLargeError: If the request exceeds the tier context
            InvocationError: On timeouts, connection failures, other API errors or empty output
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(
                model=tier.id,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            )
        except openai.RateLimitError as e:
            raise CapacityError(str(e), tier_id=tier.id, retry_after=_retry_after(e)) from e
        except openai.APIStatusError as e:
            if isinstance(e, openai.BadRequestError) or e.status_code == 413:
                if _is_context_error(e):
                    raise ContextTooLargeError(str(e), tier_id=tier.id) from e
            raise InvocationError(f"{tier.id} returned {e.status_code}: {e}", tier_id=tier.id) from e
        except openai.APITimeoutError as e:
            raise InvocationError(f"{tier.id} timed out", tier_id=tier.id) from e
        except openai.APIError as e:
            raise InvocationError(f"{tier.id} request failed: {e}", tier_id=tier.id) from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise InvocationError(f"{tier.id} returned an empty completion", tier_id=tier.id)

        usage = TokenUsage(
            prompt_tokens=response.usage.prompt_tokens if response.usage else 0,
            completion_tokens=response.usage.completion_tokens if response.usage else 0,
        )
        estimated_cost = calculate_cost(tier, usage)
        logger.debug(
            "Completion on %s used %d tokens ($%.6f)",
            tier.id, usage.total_tokens, estimated_cost,
        )

        return CompletionResponse(
            content=content,
            usage=usage,
            estimated_cost=estimated_cost,
            request_id=response.id,
        )
