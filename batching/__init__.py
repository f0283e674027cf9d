"""
Batching package: one origin, many destinations, under the provider's rate limits.

Public API:
- BatchScheduler
- Destination
- BatchPolicy
- RateLimiter
"""

from .policy import BatchPolicy, bulk_policy, default_policy, navigation_policy
from .rate_limit import RateLimiter
from .scheduler import BatchRunStats, BatchScheduler, Destination

__all__ = [
    "BatchPolicy",
    "BatchRunStats",
    "BatchScheduler",
    "Destination",
    "RateLimiter",
    "bulk_policy",
    "default_policy",
    "navigation_policy",
]
