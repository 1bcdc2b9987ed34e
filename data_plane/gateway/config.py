import math
import os
from typing import Mapping, NamedTuple, Optional

# --- Defaults ---
# In a Kubernetes setup these come from the gateway Deployment's env vars
DEFAULT_PROVIDER_URL = "http://faas-provider:8081"
DEFAULT_MAX_POLL_COUNT = 1000
DEFAULT_POLL_INTERVAL = 0.05  # seconds
DEFAULT_CACHE_EXPIRY = 0.25  # seconds
DEFAULT_UPSTREAM_TIMEOUT = 60.0  # seconds
DEFAULT_PORT = 8080

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


class GatewayConfig(NamedTuple):
    functions_provider_url: str = DEFAULT_PROVIDER_URL
    scale_from_zero: bool = True
    max_poll_count: int = DEFAULT_MAX_POLL_COUNT
    function_poll_interval: float = DEFAULT_POLL_INTERVAL
    cache_expiry: float = DEFAULT_CACHE_EXPIRY
    upstream_timeout: float = DEFAULT_UPSTREAM_TIMEOUT
    port: int = DEFAULT_PORT
    log_level: str = "INFO"


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _parse_duration(name: str, value: str) -> float:
    """Accepts plain seconds ("0.5") or a unit suffix ("50ms", "2s", "1m")."""
    raw = value.strip().lower()
    try:
        if raw.endswith("ms"):
            seconds = float(raw[:-2]) / 1000
        elif raw.endswith("s"):
            seconds = float(raw[:-1])
        elif raw.endswith("m"):
            seconds = float(raw[:-1]) * 60
        else:
            seconds = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a duration, got {value!r}") from None
    if not math.isfinite(seconds):
        raise ValueError(f"{name} must be a finite duration, got {value!r}")
    if seconds < 0:
        raise ValueError(f"{name} must not be negative, got {value!r}")
    return seconds


def _parse_count(name: str, value: str) -> int:
    try:
        count = int(value.strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
    if count < 0:
        raise ValueError(f"{name} must not be negative, got {value!r}")
    return count


def load_config(env: Optional[Mapping[str, str]] = None) -> GatewayConfig:
    """Reads the gateway configuration from environment variables."""
    env = os.environ if env is None else env
    defaults = GatewayConfig()

    def read(name, parse, default):
        value = env.get(name)
        if value is None:
            return default
        return parse(name, value)

    return GatewayConfig(
        functions_provider_url=env.get("functions_provider_url", defaults.functions_provider_url).rstrip("/"),
        scale_from_zero=read("scale_from_zero", _parse_bool, defaults.scale_from_zero),
        max_poll_count=read("max_poll_count", _parse_count, defaults.max_poll_count),
        function_poll_interval=read("function_poll_interval", _parse_duration, defaults.function_poll_interval),
        cache_expiry=read("cache_expiry", _parse_duration, defaults.cache_expiry),
        upstream_timeout=read("upstream_timeout", _parse_duration, defaults.upstream_timeout),
        port=read("port", _parse_count, defaults.port),
        log_level=env.get("log_level", defaults.log_level).upper(),
    )
