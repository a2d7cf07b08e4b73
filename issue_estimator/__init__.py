"""
Issue cost estimator.

Estimates the complexity and cost of GitHub issues by routing each one
through tiered completion models under per-tier token-rate limits.
"""

__version__ = "0.1.0"
