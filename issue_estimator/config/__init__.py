"""
Configuration for the issue estimator.

Tier catalog, pipeline settings, prompts and logging setup.
"""

from .loader import (
    AnalysisSettings,
    EstimatorConfig,
    TierConfig,
    default_config,
    load_estimator_config,
)

__all__ = [
    "AnalysisSettings",
    "EstimatorConfig",
    "TierConfig",
    "default_config",
    "load_estimator_config",
]
