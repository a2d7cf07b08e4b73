"""
SDK for the issue estimator.

Provides the completion client used by the analysis pipeline.
"""

from .openai_client import CompletionResponse, TierCompletionClient

__all__ = ["CompletionResponse", "TierCompletionClient"]
