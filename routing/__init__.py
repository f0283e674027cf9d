#Marks routing as a package.
#Re-exports the public API (DecisionPolicy, RouteClient, RouteCache, build_engine, ...)
#so other modules import from routing without knowing internal file names.
#No business logic.

from .cache import CacheError, CacheStats, RouteCache, make_cache_key
from .coalescer import RequestCoalescer
from .config import ConfigError, RoutingConfig, load_config
from .decision import (
    DecisionPolicy,
    Resolution,
    ResolutionState,
    ResolveOptions,
    RoutingFailedError,
)
from .engine import ConnectivityReport, build_engine, check_connectivity
from .geometry import estimate_duration_min, geometry_result, haversine_km
from .models import (
    CacheEntry,
    Coordinate,
    Profile,
    ResolutionMethod,
    RouteQuery,
    RouteResult,
)
from .ors_client import NetworkError, ProviderError, RetryPolicy, RouteClient, RouteClientError
from .storage import FileKeyValueStore, InMemoryKeyValueStore, KeyValueStore, PersistenceError

__all__ = [
    "CacheEntry",
    "CacheError",
    "CacheStats",
    "ConfigError",
    "ConnectivityReport",
    "Coordinate",
    "DecisionPolicy",
    "FileKeyValueStore",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "NetworkError",
    "PersistenceError",
    "Profile",
    "ProviderError",
    "RequestCoalescer",
    "Resolution",
    "ResolutionMethod",
    "ResolutionState",
    "ResolveOptions",
    "RetryPolicy",
    "RouteCache",
    "RouteClient",
    "RouteClientError",
    "RouteQuery",
    "RouteResult",
    "RoutingConfig",
    "RoutingFailedError",
    "build_engine",
    "check_connectivity",
    "estimate_duration_min",
    "geometry_result",
    "haversine_km",
    "load_config",
    "make_cache_key",
]
