#Purpose: Straight-line ("as the crow flies") distance and the estimates built on it.
#Pure functions, no I/O. Used:
#- by the decision policy to compare against the straight-line threshold
#- as the fallback when the routing provider cannot answer
#Callers are responsible for valid coordinates (Coordinate validates on construction).

from __future__ import annotations

import math
from typing import Mapping, Optional

from .models import Coordinate, Profile, ResolutionMethod, RouteQuery, RouteResult

EARTH_RADIUS_KM = 6371.0

# Average speeds used when there is no route to read a duration from.
DEFAULT_ESTIMATE_SPEEDS_KMH = {
    Profile.DRIVING: 30.0,
    Profile.WALKING: 5.0,
    Profile.CYCLING: 15.0,
}


def haversine_km(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two points on a spherical Earth, in kilometers."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    delta_lat = math.radians(b.latitude - a.latitude)
    delta_lon = math.radians(b.longitude - a.longitude)

    h = math.sin(delta_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(delta_lon / 2) ** 2
    # clamp: rounding can push h a hair above 1 for antipodal points
    h = min(1.0, h)
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def estimate_duration_min(distance_km: float, speed_kmh: float) -> float:
    if speed_kmh <= 0:
        raise ValueError("speed_kmh must be > 0")
    return (distance_km / speed_kmh) * 60.0


def geometry_result(
    query: RouteQuery,
    speeds_kmh: Optional[Mapping[Profile, float]] = None,
    *,
    method: ResolutionMethod = ResolutionMethod.GEOMETRY,
    distance_km: Optional[float] = None,
) -> RouteResult:
    """
    Build the estimate record for a query: straight-line distance and a
    duration at the profile's average speed.

    `distance_km` can be passed when the caller already computed it.
    """
    speeds = speeds_kmh or DEFAULT_ESTIMATE_SPEEDS_KMH
    if distance_km is None:
        distance_km = haversine_km(query.origin, query.destination)
    speed = speeds.get(query.profile, DEFAULT_ESTIMATE_SPEEDS_KMH[query.profile])

    return RouteResult(
        distance_km=distance_km,
        duration_min=estimate_duration_min(distance_km, speed),
        method=method,
        is_estimate=True,
    )
