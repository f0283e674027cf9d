import pytest

from routing.models import (
    CacheEntry,
    Coordinate,
    Profile,
    ResolutionMethod,
    RouteQuery,
    RouteResult,
)

from fakes import routed_result


def test_profiles_map_to_provider_slugs():
    assert Profile.DRIVING.provider_slug == "driving-car"
    assert Profile.WALKING.provider_slug == "foot-walking"
    assert Profile.CYCLING.provider_slug == "cycling-regular"


def test_coordinate_lon_lat_ordering():
    point = Coordinate(latitude=-37.8136, longitude=144.9631)

    assert point.to_lon_lat() == [144.9631, -37.8136]
    assert Coordinate.from_lon_lat([144.9631, -37.8136, 12.0]) == point


def test_route_query_is_hashable_and_detects_same_point():
    a = Coordinate(1.0, 2.0)
    query = RouteQuery(a, Coordinate(1.0, 2.0))

    assert query.is_degenerate
    assert {query: 1}[RouteQuery(a, a)] == 1
    assert not RouteQuery(a, Coordinate(1.0, 2.1)).is_degenerate


def test_geometry_result_must_be_an_estimate():
    with pytest.raises(ValueError):
        RouteResult(distance_km=1.0, duration_min=2.0, method=ResolutionMethod.GEOMETRY, is_estimate=False)


def test_routed_result_cannot_be_an_estimate():
    with pytest.raises(ValueError):
        RouteResult(distance_km=1.0, duration_min=2.0, method=ResolutionMethod.ROUTED, is_estimate=True)


def test_fallback_result_must_be_an_estimate():
    with pytest.raises(ValueError):
        RouteResult(distance_km=1.0, duration_min=2.0, method=ResolutionMethod.ROUTED_FALLBACK, is_estimate=False)


def test_negative_distance_is_rejected():
    with pytest.raises(ValueError):
        RouteResult(distance_km=-0.1, duration_min=2.0, method=ResolutionMethod.GEOMETRY, is_estimate=True)


def test_result_survives_json_shape():
    original = routed_result()

    restored = RouteResult.from_dict(original.to_dict())

    assert restored == original
    assert restored.to_dict()["method"] == "routed"


def test_without_geometry_keeps_everything_else():
    original = routed_result()

    stripped = original.without_geometry()

    assert stripped.geometry is None
    assert stripped.instructions == original.instructions
    assert stripped.distance_km == original.distance_km


def test_cache_entry_expires_at_boundary():
    entry = CacheEntry(result=routed_result(), created_at=100.0, expires_at=110.0)

    assert not entry.is_expired(109.999)
    assert entry.is_expired(110.0)
    assert CacheEntry.from_dict(entry.to_dict()) == entry
