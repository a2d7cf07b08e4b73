"""
Core modules for the issue estimator.

This package contains token estimation, rate limiting, tier selection,
the summarization and analysis stages, and batch orchestration.
"""
