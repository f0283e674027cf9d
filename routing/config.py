"""
Purpose: Central configuration for routing behavior (single source of truth).
What it does:

Stores all tunable switches/thresholds consumed by the engine:

ORS_API_KEY (optional - no key means straight-line only)

ORS_BASE_URL = https://api.openrouteservice.org/v2/directions

STRAIGHT_LINE_THRESHOLD_KM = 0.5

CACHE_EXPIRY_HOURS = 24

MAX_RETRIES = 2, REQUEST_TIMEOUT_MS = 5000

load_config() is the only place that touches the environment (.env via python-dotenv).
The engine receives a RoutingConfig and never reads os.environ itself.

Rule: No routing logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from .geometry import DEFAULT_ESTIMATE_SPEEDS_KMH
from .models import Profile

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openrouteservice.org/v2/directions"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class ConfigError(ValueError):
    """Raised when the routing configuration is missing or malformed."""
    pass


@dataclass(frozen=True)
class RoutingConfig:
    """
    Configuration surface of the resolution engine.

    Notes:
    - routing only happens when enable_routing is on AND an api_key is set;
      otherwise every query resolves to the straight-line estimate.
    - fallback results are cached with a much shorter TTL than routed ones so
      a provider outage is retried soon after it ends.
    """

    # --- Provider ---
    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    enable_routing: bool = True

    # --- Cache ---
    cache_enabled: bool = True
    cache_ttl_hours: float = 24.0
    fallback_cache_ttl_minutes: float = 15.0
    max_cache_entries: int = 1000

    # --- Decision ---
    # Below this straight-line distance a route is not worth an API call.
    straight_line_threshold_km: float = 0.5

    # --- Remote call lifecycle ---
    max_retries: int = 2  # additional attempts after the first
    request_timeout_ms: int = 5000
    backoff_base_s: float = 1.0

    # --- Estimates ---
    estimate_speeds_kmh: Dict[Profile, float] = field(
        default_factory=lambda: dict(DEFAULT_ESTIMATE_SPEEDS_KMH)
    )

    debug_routing: bool = False

    @property
    def routing_available(self) -> bool:
        return self.enable_routing and bool(self.api_key)

    @property
    def cache_ttl_s(self) -> float:
        return self.cache_ttl_hours * 3600.0

    @property
    def fallback_cache_ttl_s(self) -> float:
        return self.fallback_cache_ttl_minutes * 60.0

    def validate(self) -> None:
        """
        Collect every problem and raise them together.
        """
        errors: List[str] = []

        if self.api_key is not None and not self.api_key.strip():
            errors.append("api_key is set but blank")

        parsed = urlparse(self.base_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append(f"invalid base_url: {self.base_url!r}")

        if self.cache_ttl_hours <= 0:
            errors.append("cache_ttl_hours must be > 0")

        if self.fallback_cache_ttl_minutes <= 0:
            errors.append("fallback_cache_ttl_minutes must be > 0")

        if self.max_cache_entries <= 0:
            errors.append("max_cache_entries must be > 0")

        if self.straight_line_threshold_km < 0:
            errors.append("straight_line_threshold_km must be >= 0")

        if self.max_retries < 0:
            errors.append("max_retries must be >= 0")

        if self.request_timeout_ms <= 0:
            errors.append("request_timeout_ms must be > 0")

        if self.backoff_base_s < 0:
            errors.append("backoff_base_s must be >= 0")

        for profile, speed in self.estimate_speeds_kmh.items():
            if speed <= 0:
                errors.append(f"estimate speed for {profile.value} must be > 0")

        if errors:
            raise ConfigError("; ".join(errors))

    def warnings(self) -> List[str]:
        warnings: List[str] = []
        if not self.api_key:
            warnings.append(
                "No OpenRouteService API key configured. Routing will fall back to straight-line distance."
            )
        if not self.enable_routing:
            warnings.append("Routing is disabled. All distances are straight-line estimates.")
        return warnings

    def with_overrides(self, **overrides) -> RoutingConfig:
        """
        Return a copy with some fields replaced (runtime reconfiguration).
        """
        updated = replace(self, **overrides)
        updated.validate()
        return updated


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _parse_number(name: str, raw: str, kind=float):
    try:
        return kind(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be a {kind.__name__}, got {raw!r}") from None


def load_config(
    env: Optional[Mapping[str, str]] = None,
    *,
    dotenv_path: Optional[str] = None,
    require_api_key: bool = False,
) -> RoutingConfig:
    """
    Build a RoutingConfig from environment variables.

    Reads a .env file first (python-dotenv, existing variables win), then the
    given mapping (defaults to os.environ). Unset variables keep their defaults.

    Example .env:
        ORS_API_KEY=5b3ce3597851110001cf6248...
        STRAIGHT_LINE_THRESHOLD_KM=0.5
    """
    if env is None:
        load_dotenv(dotenv_path)
        env = os.environ

    defaults = RoutingConfig()
    kwargs = {}

    api_key = env.get("ORS_API_KEY")
    if api_key is not None:
        kwargs["api_key"] = api_key

    if "ORS_BASE_URL" in env:
        kwargs["base_url"] = env["ORS_BASE_URL"].strip().rstrip("/")

    booleans = {
        "ENABLE_ROUTING": "enable_routing",
        "CACHE_ENABLED": "cache_enabled",
        "DEBUG_ROUTING": "debug_routing",
    }
    for var, attr in booleans.items():
        if var in env:
            kwargs[attr] = _parse_bool(var, env[var])

    numbers = {
        "CACHE_EXPIRY_HOURS": ("cache_ttl_hours", float),
        "FALLBACK_CACHE_TTL_MINUTES": ("fallback_cache_ttl_minutes", float),
        "MAX_CACHE_ENTRIES": ("max_cache_entries", int),
        "STRAIGHT_LINE_THRESHOLD_KM": ("straight_line_threshold_km", float),
        "MAX_RETRIES": ("max_retries", int),
        "REQUEST_TIMEOUT_MS": ("request_timeout_ms", int),
        "RETRY_BACKOFF_BASE_S": ("backoff_base_s", float),
    }
    for var, (attr, kind) in numbers.items():
        if var in env:
            kwargs[attr] = _parse_number(var, env[var], kind)

    speeds = dict(defaults.estimate_speeds_kmh)
    for profile in Profile:
        var = f"ESTIMATE_SPEED_{profile.name}_KMH"
        if var in env:
            speeds[profile] = _parse_number(var, env[var], float)
    kwargs["estimate_speeds_kmh"] = speeds

    config = RoutingConfig(**kwargs)
    config.validate()

    if require_api_key and not config.api_key:
        raise ConfigError("ORS_API_KEY is required but not set")

    for warning in config.warnings():
        logger.warning(warning)

    return config


def configure_logging(config: RoutingConfig) -> None:
    """
    Turn the engine's loggers up to DEBUG when debug_routing is on.
    """
    level = logging.DEBUG if config.debug_routing else logging.INFO
    for name in ("routing", "batching"):
        logging.getLogger(name).setLevel(level)


def api_key_instructions() -> str:
    return """
To enable road routing, get a free OpenRouteService API key:

1. Sign up at https://openrouteservice.org/dev/#/signup
2. Create a token in the dashboard (free tier: 2000 requests/day, 40/minute)
3. Put it in your .env file:
   ORS_API_KEY=your_api_key_here
4. Restart the process

Without a key, distances are straight-line estimates.
""".strip()
