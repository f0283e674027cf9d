"""
Purpose: The resolution decision pipeline (DecisionPolicy), the single entry point
other modules call to turn a RouteQuery into a RouteResult.

States:
    GEOMETRY_ONLY  -> straight-line estimate, terminal
    ATTEMPT_ROUTE  -> cache / coalesced provider call in progress
    ROUTED         -> provider (or cached provider) result, terminal
    FALLBACK       -> provider failed, straight-line estimate flagged routed-fallback, terminal

Transition rules, evaluated in order:
1. routing disabled or no API key                           -> GEOMETRY_ONLY
2. straight-line <= threshold and routing not forced         -> GEOMETRY_ONLY
3. otherwise ATTEMPT_ROUTE: cache hit                        -> ROUTED (GEOMETRY_ONLY if the hit was a fallback)
4. cache miss: coalesce and await the provider
5. success                                                   -> ROUTED, cached for cache_ttl_hours
6. failure after retries                                     -> FALLBACK, cached for fallback_cache_ttl_minutes

force_routing skips rule 2 and the cache read (it still coalesces and still writes the cache).

Rule: The policy owns its cache and coalescer. Nobody else mutates them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .cache import RouteCache, make_cache_key
from .coalescer import RequestCoalescer
from .config import RoutingConfig
from .geometry import geometry_result, haversine_km
from .models import ResolutionMethod, RouteQuery, RouteResult
from .ors_client import RouteClient, RouteClientError

logger = logging.getLogger(__name__)


class ResolutionState(Enum):
    GEOMETRY_ONLY = "GEOMETRY_ONLY"
    ATTEMPT_ROUTE = "ATTEMPT_ROUTE"
    ROUTED = "ROUTED"
    FALLBACK = "FALLBACK"


class RoutingFailedError(Exception):
    """
    Raised only when routing was forced with fallback disabled and no route could be obtained.
    Every other configuration degrades to an estimate instead.
    """

    def __init__(self, query: RouteQuery, cause: Optional[BaseException] = None) -> None:
        reason = f": {cause}" if cause is not None else ""
        super().__init__(f"Routing failed for {query.profile.value} query{reason}")
        self.query = query
        self.cause = cause


@dataclass(frozen=True)
class ResolveOptions:
    """
    Per-call knobs. None means "use the config value".
    """

    force_routing: bool = False  # navigation-style callers: always a fresh route
    allow_fallback: bool = True  # False + force_routing -> RoutingFailedError instead of an estimate
    use_routing: Optional[bool] = None
    threshold_km: Optional[float] = None
    prioritize_speed: bool = False  # straight-line unless forced
    include_geometry: bool = True


DEFAULT_OPTIONS = ResolveOptions()


@dataclass(frozen=True)
class Resolution:
    result: RouteResult
    state: ResolutionState
    cache_hit: bool = False
    coalesced: bool = False  # joined another caller's in-flight provider call
    straight_line_km: float = 0.0


class DecisionPolicy:
    def __init__(
        self,
        config: RoutingConfig,
        *,
        client: Optional[RouteClient] = None,
        cache: Optional[RouteCache] = None,
        coalescer: Optional[RequestCoalescer] = None,
    ) -> None:
        config.validate()
        self.config = config
        self.client = client
        self.cache = cache if cache is not None else RouteCache(
            default_ttl_s=config.cache_ttl_s,
            max_entries=config.max_cache_entries,
        )
        self.coalescer = coalescer if coalescer is not None else RequestCoalescer()

    @property
    def routing_enabled(self) -> bool:
        return self.config.routing_available and self.client is not None

    # --- Decision (rules 1-2) ---

    def initial_state(
        self, query: RouteQuery, options: ResolveOptions = DEFAULT_OPTIONS
    ) -> Tuple[ResolutionState, float]:
        """
        Decide between GEOMETRY_ONLY and ATTEMPT_ROUTE without any I/O.
        Returns the state and the straight-line distance it was based on.
        """
        straight_km = haversine_km(query.origin, query.destination)

        if query.is_degenerate:
            return ResolutionState.GEOMETRY_ONLY, straight_km

        if not self.routing_enabled:
            return ResolutionState.GEOMETRY_ONLY, straight_km

        if options.force_routing:
            return ResolutionState.ATTEMPT_ROUTE, straight_km

        use_routing = True if options.use_routing is None else options.use_routing
        if not use_routing or options.prioritize_speed:
            return ResolutionState.GEOMETRY_ONLY, straight_km

        threshold = (
            self.config.straight_line_threshold_km if options.threshold_km is None else options.threshold_km
        )
        if straight_km <= threshold:
            return ResolutionState.GEOMETRY_ONLY, straight_km

        return ResolutionState.ATTEMPT_ROUTE, straight_km

    # --- Resolution (rules 3-6) ---

    async def resolve(self, query: RouteQuery, options: ResolveOptions = DEFAULT_OPTIONS) -> RouteResult:
        resolution = await self.resolve_with_state(query, options)
        return resolution.result

    async def resolve_with_state(
        self, query: RouteQuery, options: ResolveOptions = DEFAULT_OPTIONS
    ) -> Resolution:
        state, straight_km = self.initial_state(query, options)
        logger.debug("%s -> %s (straight-line %.3f km)", query.profile.value, state.value, straight_km)

        if state is ResolutionState.GEOMETRY_ONLY:
            if options.force_routing and not options.allow_fallback and not query.is_degenerate:
                # forced, no fallback allowed, and there is nothing to route with
                raise RoutingFailedError(query)
            result = self._estimate(query, straight_km, ResolutionMethod.GEOMETRY)
            return Resolution(result=result, state=state, straight_line_km=straight_km)

        key = make_cache_key(query)
        use_cache = self.config.cache_enabled

        if use_cache and not options.force_routing:
            cached = self.cache.get(key)
            if cached is not None:
                cached_state = (
                    ResolutionState.GEOMETRY_ONLY
                    if cached.method is ResolutionMethod.ROUTED_FALLBACK
                    else ResolutionState.ROUTED
                )
                return Resolution(
                    result=self._shape(cached, options),
                    state=cached_state,
                    cache_hit=True,
                    straight_line_km=straight_km,
                )

        try:
            result, coalesced = await self.coalescer.coalesce_with_status(
                key, lambda: self._fetch_route(key, query)
            )
        except RouteClientError as exc:
            logger.warning("Routing failed for %s, falling back to straight-line distance: %s", key, exc)
            return self._fall_back(query, key, straight_km, options, exc)
        except Exception as exc:
            logger.exception("Unexpected error routing %s, falling back to straight-line distance", key)
            return self._fall_back(query, key, straight_km, options, exc)

        return Resolution(
            result=self._shape(result, options),
            state=ResolutionState.ROUTED,
            coalesced=coalesced,
            straight_line_km=straight_km,
        )

    def _fall_back(
        self,
        query: RouteQuery,
        key: str,
        straight_km: float,
        options: ResolveOptions,
        cause: Exception,
    ) -> Resolution:
        if options.force_routing and not options.allow_fallback:
            raise RoutingFailedError(query, cause) from cause

        fallback = self._estimate(query, straight_km, ResolutionMethod.ROUTED_FALLBACK)
        if self.config.cache_enabled:
            self.cache.put(key, fallback, ttl_s=self.config.fallback_cache_ttl_s)
        return Resolution(result=fallback, state=ResolutionState.FALLBACK, straight_line_km=straight_km)

    async def _fetch_route(self, key: str, query: RouteQuery) -> RouteResult:
        # runs once per key however many callers are waiting on it
        result = await self.client.resolve(
            query,
            timeout_ms=self.config.request_timeout_ms,
            max_retries=self.config.max_retries,
        )
        logger.info(
            "Routed %s: %.2f km, %.1f min, %s points",
            key,
            result.distance_km,
            result.duration_min,
            len(result.geometry or ()),
        )
        if self.config.cache_enabled:
            self.cache.put(key, result, ttl_s=self.config.cache_ttl_s)
        return result

    def _estimate(self, query: RouteQuery, straight_km: float, method: ResolutionMethod) -> RouteResult:
        return geometry_result(
            query,
            self.config.estimate_speeds_kmh,
            method=method,
            distance_km=straight_km,
        )

    @staticmethod
    def _shape(result: RouteResult, options: ResolveOptions) -> RouteResult:
        if options.include_geometry:
            return result
        return result.without_geometry()

    # --- Introspection ---

    def stats(self) -> Dict[str, Any]:
        cache_stats = self.cache.stats()
        return {
            "routing_enabled": self.routing_enabled,
            "api_key_configured": bool(self.config.api_key),
            "cache_enabled": self.config.cache_enabled,
            "cache_count": cache_stats.count,
            "cache_bytes": cache_stats.approximate_byte_size,
            "in_flight": self.coalescer.pending_count,
            "straight_line_threshold_km": self.config.straight_line_threshold_km,
        }

    def reconfigure(self, **overrides) -> None:
        """
        Swap in an updated config (e.g. a new threshold). The client is not rebuilt;
        pass a new one to the constructor to change the API key.
        """
        self.config = self.config.with_overrides(**overrides)
