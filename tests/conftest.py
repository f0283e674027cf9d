import pytest

from routing.config import RoutingConfig

from fakes import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def routing_config():
    return RoutingConfig(api_key="test-key")
