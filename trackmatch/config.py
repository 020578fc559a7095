"""Application configuration utilities for trackmatch."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any

from trackmatch.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CATALOG_BASE_URL = "https://api.spotify.com/v1"
DEFAULT_CATALOG_SEARCH_LIMIT = 10
DEFAULT_CATALOG_TIMEOUT_MS = 10_000

DEFAULT_BACKOFF_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE_DELAY_MS = 1_000
DEFAULT_BACKOFF_MAX_DELAY_MS = 30_000
DEFAULT_BACKOFF_JITTER_FACTOR = 0.1

DEFAULT_RESOLVER_CONCURRENCY = 5
DEFAULT_MATCH_THRESHOLD = 0.8

DEFAULT_RATE_LIMIT_WINDOW_MS = 60_000
DEFAULT_RATE_LIMIT_GENERAL_MAX = 100
DEFAULT_RATE_LIMIT_GENERATE_MAX = 10
DEFAULT_RATE_LIMIT_SWEEP_INTERVAL_MS = 5 * 60 * 1000
DEFAULT_RATE_LIMIT_MAX_IDLE_MS = 10 * 60 * 1000
DEFAULT_RATE_LIMIT_PATHS: tuple[str, ...] = ("/api/",)

DEFAULT_APP_HOST = "0.0.0.0"
DEFAULT_APP_PORT = 8080


_RUNTIME_ENV_CACHE: dict[str, str] | None = None


def _load_env_file(path: Path) -> dict[str, str]:
    try:
        contents = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    env_values: dict[str, str] = {}
    for line in contents.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, value = stripped.partition("=")
        if not sep:
            continue
        env_values[key.strip()] = value.strip().strip('"').strip("'")
    return env_values


def load_runtime_env(
    *,
    env_file: str | os.PathLike[str] | None = None,
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Load runtime environment values applying .env before explicit environment."""

    env: dict[str, str] = {}
    source = dict(base_env or os.environ)

    path = Path(env_file) if env_file is not None else Path(".env")
    if path.exists() and path.is_file():
        env.update(_load_env_file(path))

    env.update({key: str(value) for key, value in source.items() if value is not None})
    return env


def get_runtime_env() -> Mapping[str, str]:
    """Return the cached runtime environment mapping."""

    global _RUNTIME_ENV_CACHE
    if _RUNTIME_ENV_CACHE is None:
        _RUNTIME_ENV_CACHE = load_runtime_env()
    return _RUNTIME_ENV_CACHE


def override_runtime_env(runtime_env: Mapping[str, str] | None) -> None:
    """Override the cached runtime environment (primarily for testing)."""

    global _RUNTIME_ENV_CACHE
    if runtime_env is None:
        _RUNTIME_ENV_CACHE = None
    else:
        _RUNTIME_ENV_CACHE = dict(runtime_env)


def get_env(name: str, default: str | None = None) -> str | None:
    """Return an environment variable honoring ENV > .env > defaults."""

    env = get_runtime_env()
    return env.get(name, default)


def _env_value(env: Mapping[str, Any], key: str) -> str | None:
    value = env.get(key)
    if value is None:
        return None
    return str(value)


def _as_bool(value: str | None, *, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _bounded_int(
    value: Any,
    *,
    default: int,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    try:
        resolved = int(value)
    except (TypeError, ValueError):
        resolved = default
    if minimum is not None:
        resolved = max(minimum, resolved)
    if maximum is not None:
        resolved = min(maximum, resolved)
    return resolved


def _bounded_float(
    value: Any,
    *,
    default: float,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float:
    try:
        resolved = float(value)
    except (TypeError, ValueError):
        resolved = default
    if minimum is not None:
        resolved = max(minimum, resolved)
    if maximum is not None:
        resolved = min(maximum, resolved)
    return resolved


def _parse_list(value: str | None) -> list[str]:
    if value is None:
        return []
    candidates = value.replace("\n", ",").split(",")
    return [item.strip() for item in candidates if item.strip()]


@dataclass(slots=True, frozen=True)
class CatalogConfig:
    base_url: str = DEFAULT_CATALOG_BASE_URL
    search_limit: int = DEFAULT_CATALOG_SEARCH_LIMIT
    timeout_ms: int = DEFAULT_CATALOG_TIMEOUT_MS
    enable_retries: bool = True


@dataclass(slots=True, frozen=True)
class BackoffConfig:
    """Retry budget and delay shape for transient catalog failures."""

    max_retries: int = DEFAULT_BACKOFF_MAX_RETRIES
    base_delay_ms: int = DEFAULT_BACKOFF_BASE_DELAY_MS
    max_delay_ms: int = DEFAULT_BACKOFF_MAX_DELAY_MS
    jitter_factor: float = DEFAULT_BACKOFF_JITTER_FACTOR


@dataclass(slots=True, frozen=True)
class ResolverConfig:
    concurrency: int = DEFAULT_RESOLVER_CONCURRENCY
    match_threshold: float = DEFAULT_MATCH_THRESHOLD


@dataclass(slots=True, frozen=True)
class RateLimitConfig:
    """Token bucket shape: ``capacity`` permits refilled over ``window_ms``."""

    capacity: int
    window_ms: int

    @property
    def refill_per_ms(self) -> float:
        return self.capacity / float(self.window_ms)


RATE_LIMITS: Mapping[str, RateLimitConfig] = {
    # catalog search routes, keyed by session
    "generate": RateLimitConfig(
        capacity=DEFAULT_RATE_LIMIT_GENERATE_MAX, window_ms=DEFAULT_RATE_LIMIT_WINDOW_MS
    ),
    # everything else, keyed by client IP
    "general": RateLimitConfig(
        capacity=DEFAULT_RATE_LIMIT_GENERAL_MAX, window_ms=DEFAULT_RATE_LIMIT_WINDOW_MS
    ),
}


@dataclass(slots=True, frozen=True)
class RateLimitMiddlewareConfig:
    enabled: bool = True
    general: RateLimitConfig = field(default_factory=lambda: RATE_LIMITS["general"])
    generate: RateLimitConfig = field(default_factory=lambda: RATE_LIMITS["generate"])
    sweep_interval_ms: int = DEFAULT_RATE_LIMIT_SWEEP_INTERVAL_MS
    max_idle_ms: int = DEFAULT_RATE_LIMIT_MAX_IDLE_MS
    paths: tuple[str, ...] = DEFAULT_RATE_LIMIT_PATHS


@dataclass(slots=True, frozen=True)
class AppConfig:
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    rate_limit: RateLimitMiddlewareConfig = field(default_factory=RateLimitMiddlewareConfig)
    log_level: str = "INFO"


def resolve_app_port(env: Mapping[str, Any] | None = None) -> int:
    """Return the configured application port constrained to valid TCP ranges."""

    runtime_env = env if env is not None else get_runtime_env()
    raw_value = _env_value(runtime_env, "APP_PORT")
    port = _bounded_int(raw_value, default=DEFAULT_APP_PORT, minimum=1, maximum=65535)
    if raw_value is not None and raw_value.strip() != str(port):
        logger.warning("Invalid APP_PORT %r; using %d", raw_value, port)
    return port


def resolve_app_host(env: Mapping[str, Any] | None = None) -> str:
    runtime_env = env if env is not None else get_runtime_env()
    return (_env_value(runtime_env, "APP_HOST") or "").strip() or DEFAULT_APP_HOST


def _load_bucket(env: Mapping[str, Any], prefix: str, default: RateLimitConfig) -> RateLimitConfig:
    return RateLimitConfig(
        capacity=_bounded_int(
            _env_value(env, f"RATE_LIMIT_{prefix}_MAX"), default=default.capacity, minimum=1
        ),
        window_ms=_bounded_int(
            _env_value(env, f"RATE_LIMIT_{prefix}_WINDOW_MS"),
            default=default.window_ms,
            minimum=1,
        ),
    )


def load_config(env: Mapping[str, Any] | None = None) -> AppConfig:
    """Return the application configuration from the runtime environment."""

    env = env if env is not None else get_runtime_env()

    base_url = (_env_value(env, "CATALOG_BASE_URL") or "").strip() or DEFAULT_CATALOG_BASE_URL
    catalog = CatalogConfig(
        base_url=base_url.rstrip("/"),
        search_limit=_bounded_int(
            _env_value(env, "CATALOG_SEARCH_LIMIT"),
            default=DEFAULT_CATALOG_SEARCH_LIMIT,
            minimum=1,
            maximum=50,
        ),
        timeout_ms=_bounded_int(
            _env_value(env, "CATALOG_TIMEOUT_MS"),
            default=DEFAULT_CATALOG_TIMEOUT_MS,
            minimum=100,
        ),
        enable_retries=_as_bool(_env_value(env, "CATALOG_ENABLE_RETRIES"), default=True),
    )

    max_delay_ms = _bounded_int(
        _env_value(env, "BACKOFF_MAX_DELAY_MS"),
        default=DEFAULT_BACKOFF_MAX_DELAY_MS,
        minimum=0,
    )
    backoff = BackoffConfig(
        max_retries=_bounded_int(
            _env_value(env, "BACKOFF_MAX_RETRIES"),
            default=DEFAULT_BACKOFF_MAX_RETRIES,
            minimum=0,
        ),
        base_delay_ms=_bounded_int(
            _env_value(env, "BACKOFF_BASE_DELAY_MS"),
            default=DEFAULT_BACKOFF_BASE_DELAY_MS,
            minimum=0,
        ),
        max_delay_ms=max_delay_ms,
        jitter_factor=_bounded_float(
            _env_value(env, "BACKOFF_JITTER_FACTOR"),
            default=DEFAULT_BACKOFF_JITTER_FACTOR,
            minimum=0.0,
            maximum=1.0,
        ),
    )

    resolver = ResolverConfig(
        concurrency=_bounded_int(
            _env_value(env, "RESOLVER_CONCURRENCY"),
            default=DEFAULT_RESOLVER_CONCURRENCY,
            minimum=1,
            maximum=50,
        ),
        match_threshold=_bounded_float(
            _env_value(env, "RESOLVER_MATCH_THRESHOLD"),
            default=DEFAULT_MATCH_THRESHOLD,
            minimum=0.0,
            maximum=1.0,
        ),
    )

    general = _load_bucket(env, "GENERAL", RATE_LIMITS["general"])
    generate = _load_bucket(env, "GENERATE", RATE_LIMITS["generate"])
    # Idle entries must outlive any pending refill window.
    longest_window = max(general.window_ms, generate.window_ms)
    max_idle_ms = _bounded_int(
        _env_value(env, "RATE_LIMIT_MAX_IDLE_MS"),
        default=DEFAULT_RATE_LIMIT_MAX_IDLE_MS,
        minimum=2 * longest_window,
    )
    paths = tuple(_parse_list(_env_value(env, "RATE_LIMIT_PATHS"))) or DEFAULT_RATE_LIMIT_PATHS
    rate_limit = RateLimitMiddlewareConfig(
        enabled=_as_bool(_env_value(env, "RATE_LIMIT_ENABLED"), default=True),
        general=general,
        generate=generate,
        sweep_interval_ms=_bounded_int(
            _env_value(env, "RATE_LIMIT_SWEEP_INTERVAL_MS"),
            default=DEFAULT_RATE_LIMIT_SWEEP_INTERVAL_MS,
            minimum=1_000,
        ),
        max_idle_ms=max_idle_ms,
        paths=paths,
    )

    log_level = (_env_value(env, "LOG_LEVEL") or "INFO").strip().upper() or "INFO"

    return AppConfig(
        catalog=catalog,
        backoff=backoff,
        resolver=resolver,
        rate_limit=rate_limit,
        log_level=log_level,
    )


__all__ = [
    "AppConfig",
    "BackoffConfig",
    "CatalogConfig",
    "DEFAULT_MATCH_THRESHOLD",
    "RATE_LIMITS",
    "RateLimitConfig",
    "RateLimitMiddlewareConfig",
    "ResolverConfig",
    "get_env",
    "get_runtime_env",
    "load_config",
    "load_runtime_env",
    "override_runtime_env",
    "resolve_app_host",
    "resolve_app_port",
]
