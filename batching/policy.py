"""
Purpose: Central configuration for batch resolution behavior (single source of truth).
What it does:

Stores all tunable caps for fanning out many destinations:

BATCH_SIZE = 3

INTER_BATCH_DELAY_S = 0.25

REQUESTS_PER_MINUTE = 40 (OpenRouteService free tier)

MAX_CONCURRENT_REQUESTS = 5

MIN_REQUEST_INTERVAL_S = 0.1

Optionally defines a BatchPolicy object so you can pass policy explicitly.

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BatchPolicy:
    """
    Central configuration for batch route resolution.

    Keep all batching thresholds here so behavior can be tuned without
    touching the scheduler.

    Notes:
    - batch_size is how many routing calls go out together; it can never
      exceed max_concurrent_requests.
    - requests_per_minute is the provider's ceiling. Our own limits stay
      below it so a burst from one caller does not lock out the next.
    """

    # --- Batch size caps ---
    batch_size: int = 3

    # Conservative ceiling on simultaneous provider calls.
    max_concurrent_requests: int = 5

    # --- Pacing ---
    # Minimum pause between the start of one batch and the next.
    inter_batch_delay_s: float = 0.25

    # --- Provider rate limits (OpenRouteService free tier) ---
    requests_per_minute: int = 40
    requests_per_day: int = 2000

    # Minimum time between two individual requests.
    min_request_interval_s: float = 0.1

    def validate(self) -> None:
        """
        Basic sanity checks. Call once at startup if you want.
        """
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        if self.max_concurrent_requests < 1:
            raise ValueError("max_concurrent_requests must be >= 1")

        if self.batch_size > self.max_concurrent_requests:
            raise ValueError("batch_size must be <= max_concurrent_requests")

        if self.inter_batch_delay_s < 0:
            raise ValueError("inter_batch_delay_s must be >= 0")

        if self.requests_per_minute < 1:
            raise ValueError("requests_per_minute must be >= 1")

        if self.requests_per_day < self.requests_per_minute:
            raise ValueError("requests_per_day must be >= requests_per_minute")

        if self.min_request_interval_s < 0:
            raise ValueError("min_request_interval_s must be >= 0")


def default_policy() -> BatchPolicy:
    """
    Convenience factory for the default policy.
    """
    p = BatchPolicy()
    p.validate()
    return p


def bulk_policy() -> BatchPolicy:
    """
    Example: wider batches for offline bulk runs (e.g. a CSV of destinations),
    still inside the free-tier minute ceiling.
    """
    p = BatchPolicy(
        batch_size=5,
        max_concurrent_requests=5,
        inter_batch_delay_s=1.0,
        requests_per_minute=40,
    )
    p.validate()
    return p


def navigation_policy() -> BatchPolicy:
    """
    Example: one route at a time, no pause, for a handful of turn-by-turn lookups.
    """
    p = BatchPolicy(
        batch_size=1,
        max_concurrent_requests=1,
        inter_batch_delay_s=0.0,
        min_request_interval_s=0.0,
    )
    p.validate()
    return p
