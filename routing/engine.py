#Purpose: Wiring. Builds one DecisionPolicy from a RoutingConfig with every
#collaborator passed in explicitly (no module-level singletons).
#Also hosts the connectivity check used by scripts/operators.

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from .cache import RouteCache
from .coalescer import RequestCoalescer
from .config import RoutingConfig
from .decision import DecisionPolicy, ResolveOptions, RoutingFailedError
from .models import Coordinate, Profile, RouteQuery
from .ors_client import RouteClient, Sleep
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

# Melbourne CBD, ~0.93 km apart: long enough to clear the default threshold.
PROBE_ORIGIN = Coordinate(latitude=-37.8136, longitude=144.9631)
PROBE_DESTINATION = Coordinate(latitude=-37.8200, longitude=144.9700)


@dataclass(frozen=True)
class ConnectivityReport:
    success: bool
    method: str
    elapsed_ms: float
    error: Optional[str] = None


def build_engine(
    config: RoutingConfig,
    *,
    store: Optional[KeyValueStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    sleep: Sleep = asyncio.sleep,
) -> DecisionPolicy:
    """
    Assemble cache, coalescer and client around a validated config.

    With no API key (or routing disabled) no client is built and every query
    resolves to the straight-line estimate.
    """
    config.validate()

    cache = RouteCache(
        default_ttl_s=config.cache_ttl_s,
        max_entries=config.max_cache_entries,
        store=store,
    )
    if store is not None and config.cache_enabled:
        cache.load_persisted()

    client = None
    if config.routing_available:
        client = RouteClient(
            config.api_key,
            config.base_url,
            timeout_ms=config.request_timeout_ms,
            max_retries=config.max_retries,
            backoff_base_s=config.backoff_base_s,
            http_client=http_client,
            sleep=sleep,
        )
    else:
        logger.info("Routing unavailable, using straight-line estimates only")

    return DecisionPolicy(config, client=client, cache=cache, coalescer=RequestCoalescer())


async def check_connectivity(
    policy: DecisionPolicy,
    profile: Profile = Profile.DRIVING,
) -> ConnectivityReport:
    """
    Force one fresh route over a fixed pair and report how it went.
    """
    started = time.monotonic()
    query = RouteQuery(origin=PROBE_ORIGIN, destination=PROBE_DESTINATION, profile=profile)
    options = ResolveOptions(force_routing=True, allow_fallback=False)

    try:
        result = await policy.resolve(query, options)
    except RoutingFailedError as exc:
        return ConnectivityReport(
            success=False,
            method="error",
            elapsed_ms=(time.monotonic() - started) * 1000.0,
            error=str(exc),
        )

    return ConnectivityReport(
        success=True,
        method=result.method.value,
        elapsed_ms=(time.monotonic() - started) * 1000.0,
    )
