import asyncio
import json

import httpx
import polyline
import pytest

from routing.models import Coordinate, Profile, ResolutionMethod, RouteQuery
from routing.ors_client import NetworkError, ProviderError, RetryPolicy, RouteClient

from fakes import MELBOURNE_DESTINATION, MELBOURNE_ORIGIN, FakeClock

BASE_URL = "https://api.openrouteservice.org/v2/directions"

ORS_RESPONSE = {
    "routes": [
        {
            "summary": {"distance": 1234.0, "duration": 300.0},
            "geometry": {
                "type": "LineString",
                "coordinates": [[144.9631, -37.8136], [144.9650, -37.8170], [144.9700, -37.8200]],
            },
            "segments": [
                {
                    "steps": [
                        {"instruction": "Head south on Swanston Street"},
                        {"instruction": "Turn left onto Flinders Street"},
                        {"instruction": "Arrive at your destination"},
                    ]
                }
            ],
        }
    ]
}


def _query(profile=Profile.DRIVING):
    return RouteQuery(MELBOURNE_ORIGIN, MELBOURNE_DESTINATION, profile)


def _client(handler, clock=None, **kwargs):
    clock = clock or FakeClock()
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RouteClient("test-key", BASE_URL, http_client=http, sleep=clock.sleep, **kwargs), http


def _resolve(client_and_http, **kwargs):
    client, http = client_and_http

    # the RouteClient does not own a client passed in, so close it here
    async def scenario():
        async with http, client:
            return await client.resolve(_query(), **kwargs)

    return asyncio.run(scenario())


def test_borrowed_http_client_is_left_open():
    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))) as http:
            async with RouteClient("test-key", BASE_URL, http_client=http):
                pass
            return http.is_closed

    assert asyncio.run(scenario()) is False


def test_owned_http_client_is_closed():
    async def scenario():
        client = RouteClient("test-key", BASE_URL)
        async with client:
            pass
        return client._http.is_closed

    assert asyncio.run(scenario()) is True


def test_request_shape():
    client = RouteClient("test-key", BASE_URL + "/", http_client=httpx.AsyncClient())

    url, headers, body = client.build_request(_query(Profile.WALKING))

    assert url == BASE_URL + "/foot-walking"
    assert headers["Authorization"] == "test-key"
    assert body == {
        "coordinates": [[144.9631, -37.8136], [144.97, -37.82]],
        "format": "json",
        "instructions": True,
        "geometry": True,
    }


def test_successful_route_is_converted_to_km_and_minutes():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=ORS_RESPONSE)

    result = _resolve(_client(handler))

    assert result.distance_km == pytest.approx(1.234)
    assert result.duration_min == pytest.approx(5.0)
    assert result.method is ResolutionMethod.ROUTED
    assert result.is_estimate is False
    assert result.geometry[0] == Coordinate(-37.8136, 144.9631)
    assert len(result.geometry) == 3
    assert result.instructions[1] == "Turn left onto Flinders Street"

    assert len(seen) == 1
    assert seen[0].method == "POST"
    assert str(seen[0].url) == BASE_URL + "/driving-car"
    assert seen[0].headers["Authorization"] == "test-key"
    assert json.loads(seen[0].content)["coordinates"][0] == [144.9631, -37.8136]


def test_encoded_polyline_geometry_is_decoded():
    points = [(-37.8136, 144.9631), (-37.82, 144.97)]
    payload = {"routes": [{"summary": {"distance": 900, "duration": 120}, "geometry": polyline.encode(points)}]}

    result = RouteClient.parse_route(payload)

    assert result.geometry[0].latitude == pytest.approx(-37.8136)
    assert result.geometry[1].longitude == pytest.approx(144.97)
    assert result.instructions == ()


@pytest.mark.parametrize(
    "payload",
    [{}, {"routes": []}, {"routes": [{"geometry": "abc"}]}, ["not", "a", "dict"], {"routes": [{"summary": {"distance": "far"}}]}],
)
def test_malformed_payloads_are_provider_errors(payload):
    with pytest.raises(ProviderError):
        RouteClient.parse_route(payload)


def test_server_errors_are_retried_with_exponential_backoff():
    clock = FakeClock()
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(503, json={"error": "busy"})

    with pytest.raises(ProviderError) as excinfo:
        _resolve(_client(handler, clock=clock, max_retries=2, backoff_base_s=1.0))

    assert len(attempts) == 3
    assert clock.sleeps == [1.0, 2.0]
    assert excinfo.value.status_code == 503
    assert excinfo.value.attempts == 3


def test_recovers_on_a_later_attempt():
    clock = FakeClock()
    responses = [httpx.Response(500), httpx.Response(200, json=ORS_RESPONSE)]

    result = _resolve(_client(lambda request: responses.pop(0), clock=clock))

    assert result.method is ResolutionMethod.ROUTED
    assert clock.sleeps == [1.0]


def test_connection_failures_are_network_errors():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError):
        _resolve(_client(handler, max_retries=1))


def test_each_attempt_is_bounded_by_the_timeout():
    calls = []

    async def handler(request):
        calls.append(request)
        await asyncio.sleep(5)
        return httpx.Response(200, json=ORS_RESPONSE)

    with pytest.raises(NetworkError, match="timed out"):
        _resolve(_client(handler, timeout_ms=20, max_retries=1))

    assert len(calls) == 2


def test_non_json_body_is_a_provider_error():
    handler = lambda request: httpx.Response(200, text="<html>oops</html>")

    with pytest.raises(ProviderError):
        _resolve(_client(handler, max_retries=0))


def test_call_level_overrides_win():
    clock = FakeClock()
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(502)

    with pytest.raises(ProviderError):
        _resolve(_client(handler, clock=clock, max_retries=5), max_retries=0)

    assert len(attempts) == 1
    assert clock.sleeps == []


def test_retry_policy_schedule():
    policy = RetryPolicy(max_retries=3, backoff_base_s=0.5)

    assert policy.attempts == 4
    assert policy.delay_before(1) == 0.0
    assert policy.delays() == [0.5, 1.0, 2.0]

    with pytest.raises(ValueError):
        RetryPolicy(max_retries=-1)


def test_missing_credentials_are_rejected():
    with pytest.raises(ValueError):
        RouteClient("", BASE_URL)
