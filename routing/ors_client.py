#Purpose: The OpenRouteService "adapter/client".
#Sole responsibility: talk to ORS via HTTP and return normalized outputs.
#Encapsulates ORS-specific details:
#coordinate formatting ([lon,lat])
#URL construction ({base_url}/{profile slug})
#timeouts/retries/error handling
#parsing response JSON into a RouteResult
#It should not contain caching, coalescing or the routing-vs-estimate decision.

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
import polyline

from .models import Coordinate, ResolutionMethod, RouteQuery, RouteResult

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class RouteClientError(Exception):
    """Base class for failures of a single routing call."""

    def __init__(self, message: str, *, attempts: int = 1) -> None:
        super().__init__(message)
        self.attempts = attempts


class NetworkError(RouteClientError):
    """Timeout or connection failure talking to the provider."""
    pass


class ProviderError(RouteClientError):
    """Non-success HTTP status or a payload we cannot read."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, attempts: int = 1) -> None:
        super().__init__(message, attempts=attempts)
        self.status_code = status_code


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry schedule: one first attempt plus `max_retries` more,
    waiting backoff_base_s * backoff_factor**(n-1) before the n-th retry.
    """

    max_retries: int = 2
    backoff_base_s: float = 1.0
    backoff_factor: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff_base_s < 0:
            raise ValueError("backoff_base_s must be >= 0")
        if self.backoff_factor < 1.0:
            raise ValueError("backoff_factor must be >= 1.0")

    @property
    def attempts(self) -> int:
        return self.max_retries + 1

    def delay_before(self, attempt: int) -> float:
        """Seconds to wait before `attempt` (1-based). The first attempt never waits."""
        if attempt <= 1:
            return 0.0
        return self.backoff_base_s * (self.backoff_factor ** (attempt - 2))

    def delays(self) -> List[float]:
        return [self.delay_before(attempt) for attempt in range(2, self.attempts + 1)]


class RouteClient:
    """
    ORS Adapter / Client

    Sole responsibility:
    - Talk to ORS via HTTP
    - Convert internal Coordinate -> ORS [lon, lat]
    - Return normalized outputs (km, minutes)
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        *,
        timeout_ms: int = 5000,
        max_retries: int = 2,
        backoff_base_s: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if not api_key:
            raise ValueError("ORS API key not set.")
        if not base_url:
            raise ValueError("ORS base URL not set.")

        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_ms = timeout_ms  # how long one attempt may take before giving up
        self.retry_policy = RetryPolicy(max_retries=max_retries, backoff_base_s=backoff_base_s)
        self._sleep = sleep
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient()

    #----------------
    # Internal helpers for request construction and response parsing
    #----------------

    def build_request(self, query: RouteQuery) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        """Return (url, headers, json body) for a directions call."""
        url = f"{self.base_url}/{query.profile.provider_slug}"
        headers = {
            "Authorization": self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        body = {
            "coordinates": [query.origin.to_lon_lat(), query.destination.to_lon_lat()],
            "format": "json",
            "instructions": True,
            "geometry": True,
        }
        return url, headers, body

    @staticmethod
    def parse_route(payload: Any) -> RouteResult:
        """
        Read routes[0] of an ORS directions response.

        summary.distance is meters, summary.duration is seconds.
        geometry is either GeoJSON ({"coordinates": [[lon,lat],...]}) or an encoded polyline.
        """
        if not isinstance(payload, dict):
            raise ProviderError(f"Unexpected ORS response type: {type(payload).__name__}")

        routes = payload.get("routes")
        if not routes:
            raise ProviderError("No routes found in ORS response")

        route = routes[0]
        summary = route.get("summary") if isinstance(route, dict) else None
        if not isinstance(summary, dict):
            raise ProviderError("ORS route has no summary")

        try:
            # ORS omits distance/duration for zero-length routes
            distance_m = float(summary.get("distance", 0.0))
            duration_s = float(summary.get("duration", 0.0))
        except (TypeError, ValueError):
            raise ProviderError(f"Malformed ORS summary: {summary!r}") from None

        try:
            geometry = _parse_geometry(route.get("geometry"))
            instructions = tuple(
                str(step["instruction"])
                for segment in (route.get("segments") or [])[:1]
                for step in (segment.get("steps") or [])
                if step.get("instruction")
            )
        except (TypeError, ValueError, KeyError, IndexError, AttributeError) as exc:
            raise ProviderError(f"Malformed ORS route: {exc}") from exc

        return RouteResult(
            distance_km=max(0.0, distance_m / 1000.0),
            duration_min=max(0.0, duration_s / 60.0),
            method=ResolutionMethod.ROUTED,
            is_estimate=False,
            geometry=geometry,
            instructions=instructions,
        )

    #----------------
    # Public methods
    #----------------

    async def resolve(
        self,
        query: RouteQuery,
        timeout_ms: Optional[int] = None,
        max_retries: Optional[int] = None,
    ) -> RouteResult:
        """
        Fetch the route for a query, retrying with exponential backoff.

        Raises the last NetworkError / ProviderError once every attempt failed.
        """
        policy = self.retry_policy
        if max_retries is not None:
            policy = RetryPolicy(
                max_retries=max_retries,
                backoff_base_s=policy.backoff_base_s,
                backoff_factor=policy.backoff_factor,
            )
        timeout_s = (timeout_ms if timeout_ms is not None else self.timeout_ms) / 1000.0

        last_error: Optional[RouteClientError] = None
        for attempt in range(1, policy.attempts + 1):
            delay = policy.delay_before(attempt)
            if delay > 0:
                await self._sleep(delay)

            try:
                result = await self._attempt(query, timeout_s)
                if attempt > 1:
                    logger.info("ORS routing succeeded on attempt %s/%s", attempt, policy.attempts)
                return result
            except RouteClientError as exc:
                last_error = exc
                logger.warning("ORS routing attempt %s/%s failed: %s", attempt, policy.attempts, exc)

        assert last_error is not None
        last_error.attempts = policy.attempts
        logger.error("All %s ORS routing attempts failed: %s", policy.attempts, last_error)
        raise last_error

    async def _attempt(self, query: RouteQuery, timeout_s: float) -> RouteResult:
        url, headers, body = self.build_request(query)
        try:
            response = await asyncio.wait_for(
                self._http.post(url, json=body, headers=headers, timeout=timeout_s),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise NetworkError(f"ORS request timed out after {timeout_s:.1f}s") from None
        except httpx.RequestError as exc:
            raise NetworkError(f"ORS connection error: {exc}") from exc

        if not response.is_success:
            raise ProviderError(
                f"ORS API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            raise ProviderError("ORS response is not valid JSON", status_code=response.status_code) from None

        return self.parse_route(data)

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self) -> RouteClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def _parse_geometry(geometry: Any) -> Tuple[Coordinate, ...]:
    if not geometry:
        return ()
    if isinstance(geometry, str):
        # encoded polyline, (lat, lon) pairs
        return tuple(Coordinate(latitude=lat, longitude=lon) for lat, lon in polyline.decode(geometry))
    if isinstance(geometry, dict):
        geometry = geometry.get("coordinates") or []
    return tuple(Coordinate.from_lon_lat(point) for point in geometry)
