"""
Purpose: Domain models for the Routing capability.
What it does:
- Defines core data structures:
- Coordinate (latitude, longitude)
- RouteQuery (origin, destination, profile)
- RouteResult (distance_km, duration_min, geometry, instructions, method, is_estimate)
- CacheEntry (result, created_at, expires_at)
- InFlightRequest (key, pending, subscriber_count)

Defines enums/constants:
- Profile = driving | walking | cycling
- ResolutionMethod = geometry | routed | routed-fallback

Rule: No HTTP calls, no caching logic. Models only.
"""
from __future__ import annotations

import math
from concurrent.futures import Future
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

LonLat = List[float]


class Profile(Enum):
    DRIVING = "driving"
    WALKING = "walking"
    CYCLING = "cycling"

    @property
    def provider_slug(self) -> str:
        """Profile name as OpenRouteService expects it in the URL path."""
        return _PROVIDER_SLUGS[self]


_PROVIDER_SLUGS = {
    Profile.DRIVING: "driving-car",
    Profile.WALKING: "foot-walking",
    Profile.CYCLING: "cycling-regular",
}


class ResolutionMethod(Enum):
    GEOMETRY = "geometry"
    ROUTED = "routed"
    ROUTED_FALLBACK = "routed-fallback"


@dataclass(frozen=True)
class Coordinate:
    """
    A WGS84 point. Internal ordering is (lat, lon); the provider wants [lon, lat].
    """

    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (math.isfinite(self.latitude) and math.isfinite(self.longitude)):
            raise ValueError(f"Coordinate must be finite, got ({self.latitude}, {self.longitude})")
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude must be within [-90, 90], got {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude must be within [-180, 180], got {self.longitude}")

    def to_lon_lat(self) -> LonLat:
        return [self.longitude, self.latitude]

    @staticmethod
    def from_lon_lat(pair: Sequence[float]) -> Coordinate:
        return Coordinate(latitude=float(pair[1]), longitude=float(pair[0]))


@dataclass(frozen=True)
class RouteQuery:
    """
    One origin -> destination question. Immutable so it can key the cache and the coalescer.
    """

    origin: Coordinate
    destination: Coordinate
    profile: Profile = Profile.DRIVING

    @property
    def is_degenerate(self) -> bool:
        # same point in, nothing to route
        return self.origin == self.destination


@dataclass(frozen=True)
class RouteResult:
    """
    Output of a resolution, whichever way it was produced.

    method == GEOMETRY        -> always an estimate
    method == ROUTED          -> never an estimate
    method == ROUTED_FALLBACK -> routing was attempted and failed, estimate substituted
    """

    distance_km: float
    duration_min: float
    method: ResolutionMethod
    is_estimate: bool
    geometry: Optional[Tuple[Coordinate, ...]] = None
    instructions: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        if self.distance_km < 0:
            raise ValueError(f"distance_km must be >= 0, got {self.distance_km}")
        if self.duration_min < 0:
            raise ValueError(f"duration_min must be >= 0, got {self.duration_min}")
        if self.method is ResolutionMethod.ROUTED and self.is_estimate:
            raise ValueError("a routed result cannot be an estimate")
        if self.method is not ResolutionMethod.ROUTED and not self.is_estimate:
            raise ValueError(f"a {self.method.value} result must be flagged as an estimate")

    def without_geometry(self) -> RouteResult:
        if self.geometry is None:
            return self
        return replace(self, geometry=None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "distance_km": self.distance_km,
            "duration_min": self.duration_min,
            "method": self.method.value,
            "is_estimate": self.is_estimate,
            "geometry": None if self.geometry is None else [c.to_lon_lat() for c in self.geometry],
            "instructions": None if self.instructions is None else list(self.instructions),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> RouteResult:
        geometry = data.get("geometry")
        instructions = data.get("instructions")
        return RouteResult(
            distance_km=float(data["distance_km"]),
            duration_min=float(data["duration_min"]),
            method=ResolutionMethod(data["method"]),
            is_estimate=bool(data["is_estimate"]),
            geometry=None if geometry is None else tuple(Coordinate.from_lon_lat(p) for p in geometry),
            instructions=None if instructions is None else tuple(str(i) for i in instructions),
        )


@dataclass(frozen=True)
class CacheEntry:
    """
    A cached result with its validity window (epoch seconds).
    """

    result: RouteResult
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result": self.result.to_dict(),
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> CacheEntry:
        return CacheEntry(
            result=RouteResult.from_dict(data["result"]),
            created_at=float(data["created_at"]),
            expires_at=float(data["expires_at"]),
        )


@dataclass
class InFlightRequest:
    """
    A pending remote resolution shared by every caller asking for the same key.
    """

    key: str
    pending: Future  # loop-neutral, so callers on other threads can await it too
    subscriber_count: int = field(default=0)
