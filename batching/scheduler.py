"""
Purpose: The batch resolution "orchestrator" (single entry point for many destinations).
What it does:

Coordinates one origin -> many destinations end-to-end:

- partitions destinations into geometry-only (cheap, resolved immediately) and
  routing-eligible, using the DecisionPolicy's own decision rules

- groups routing-eligible destinations into fixed-size batches

- dispatches each batch concurrently through the DecisionPolicy, taking a
  rate-limiter slot per request

- waits inter_batch_delay_s between successive batches

- isolates failures: one destination failing falls back to its own
  straight-line estimate and never cancels its siblings

Typical public function signature:

- resolve_many(origin, destinations, options) -> Dict[id, RouteResult]

Rule: Scheduler is the only file other modules should call directly for batches.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from routing.decision import DEFAULT_OPTIONS, DecisionPolicy, ResolutionState, ResolveOptions
from routing.geometry import geometry_result
from routing.models import Coordinate, Profile, ResolutionMethod, RouteQuery, RouteResult

from .policy import BatchPolicy, default_policy
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Destination:
    id: str
    coordinate: Coordinate


@dataclass(frozen=True)
class BatchRunStats:
    """
    Metrics of the last resolve_many() run (optional but useful for monitoring).
    """
    total: int
    geometry_only: int
    routed_items: int
    groups: int
    fallbacks: int
    elapsed_s: float


class BatchScheduler:
    def __init__(
        self,
        policy: DecisionPolicy,
        *,
        batch_policy: Optional[BatchPolicy] = None,
        rate_limiter: Optional[RateLimiter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy
        self.batch_policy = batch_policy or default_policy()
        self.batch_policy.validate()
        self.rate_limiter = rate_limiter or RateLimiter(
            self.batch_policy.requests_per_minute,
            min_interval_s=self.batch_policy.min_request_interval_s,
            clock=clock,
            sleep=sleep,
        )
        self._sleep = sleep
        self._clock = clock
        self.last_run: Optional[BatchRunStats] = None

    def partition(
        self,
        origin: Coordinate,
        destinations: Sequence[Destination],
        options: ResolveOptions = DEFAULT_OPTIONS,
        profile: Profile = Profile.DRIVING,
    ) -> Tuple[List[Tuple[Destination, RouteQuery, float]], List[Tuple[Destination, RouteQuery]]]:
        """
        Split destinations into (geometry-only with their straight-line km, routing-eligible).
        """
        geometry_only: List[Tuple[Destination, RouteQuery, float]] = []
        routable: List[Tuple[Destination, RouteQuery]] = []

        for destination in destinations:
            query = RouteQuery(origin=origin, destination=destination.coordinate, profile=profile)
            state, straight_km = self.policy.initial_state(query, options)
            if state is ResolutionState.GEOMETRY_ONLY:
                geometry_only.append((destination, query, straight_km))
            else:
                routable.append((destination, query))

        return geometry_only, routable

    def plan_batches(self, items: Sequence) -> List[List]:
        size = self.batch_policy.batch_size
        return [list(items[start: start + size]) for start in range(0, len(items), size)]

    async def resolve_many(
        self,
        origin: Coordinate,
        destinations: Sequence[Destination],
        options: ResolveOptions = DEFAULT_OPTIONS,
        profile: Profile = Profile.DRIVING,
    ) -> Dict[str, RouteResult]:
        """
        Resolve every destination from one origin. Always returns one result per id.

        Results within a batch complete in any order but are mapped back by id.
        Batch N+1 is only dispatched after batch N (and the delay after it).
        """
        started = self._clock()
        results: Dict[str, RouteResult] = {}

        if not destinations:
            self.last_run = BatchRunStats(0, 0, 0, 0, 0, 0.0)
            return results

        seen = set()
        for destination in destinations:
            if destination.id in seen:
                logger.warning("Duplicate destination id %s, last one wins", destination.id)
            seen.add(destination.id)

        geometry_only, routable = self.partition(origin, destinations, options, profile)

        #process straight-line calculations immediately
        for destination, query, straight_km in geometry_only:
            results[destination.id] = geometry_result(
                query,
                self.policy.config.estimate_speeds_kmh,
                distance_km=straight_km,
            )

        batches = self.plan_batches(routable)
        fallbacks = 0
        for index, batch in enumerate(batches):
            if index > 0 and self.batch_policy.inter_batch_delay_s > 0:
                await self._sleep(self.batch_policy.inter_batch_delay_s)

            logger.info(
                "Dispatching batch %s/%s (%s destinations)", index + 1, len(batches), len(batch)
            )
            outcomes = await asyncio.gather(
                *(self._resolve_one(query, options) for _, query in batch),
                return_exceptions=True,
            )

            for (destination, query), outcome in zip(batch, outcomes):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                if isinstance(outcome, Exception):
                    logger.warning("Routing failed for destination %s: %s", destination.id, outcome)
                    outcome = geometry_result(
                        query,
                        self.policy.config.estimate_speeds_kmh,
                        method=ResolutionMethod.ROUTED_FALLBACK,
                    )
                if outcome.method is ResolutionMethod.ROUTED_FALLBACK:
                    fallbacks += 1
                results[destination.id] = outcome

        self.last_run = BatchRunStats(
            total=len(destinations),
            geometry_only=len(geometry_only),
            routed_items=len(routable),
            groups=len(batches),
            fallbacks=fallbacks,
            elapsed_s=self._clock() - started,
        )
        logger.info(
            "Resolved %s destinations (%s straight-line, %s routed in %s batches, %s fallbacks)",
            self.last_run.total,
            self.last_run.geometry_only,
            self.last_run.routed_items,
            self.last_run.groups,
            self.last_run.fallbacks,
        )
        return results

    async def _resolve_one(self, query: RouteQuery, options: ResolveOptions) -> RouteResult:
        await self.rate_limiter.acquire()
        return await self.policy.resolve(query, options)
