"""Settings loader: .env file plus process environment, fail fast on bad values."""
from __future__ import annotations

import os
from pathlib import Path

_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"


def _load_env_file(path: Path = _ENV_PATH) -> None:
    """Copy .env entries into os.environ without overriding existing variables."""
    if not path.exists():
        return
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


def _get_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value <= 0:
        raise ValueError(f"{name} must be > 0")
    return value


def _get_positive_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc
    if value <= 0:
        raise ValueError(f"{name} must be > 0")
    return value


_ALLOWED_BACKENDS = {"memory", "memgraph"}

STORY_GRAPH_BACKEND: str = os.getenv("STORY_GRAPH_BACKEND", "memgraph").strip().lower()
if STORY_GRAPH_BACKEND not in _ALLOWED_BACKENDS:
    raise ValueError(
        f"STORY_GRAPH_BACKEND must be one of {sorted(_ALLOWED_BACKENDS)}"
    )

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()

SYNC_TIMEOUT_SECONDS: float = _get_positive_float("SYNC_TIMEOUT_SECONDS", 30.0)

SCHEMA_RETRY_ATTEMPTS: int = _get_positive_int("SCHEMA_RETRY_ATTEMPTS", 5)
SCHEMA_RETRY_BASE_SECONDS: float = _get_positive_float("SCHEMA_RETRY_BASE_SECONDS", 0.5)
SCHEMA_RETRY_MAX_SECONDS: float = _get_positive_float("SCHEMA_RETRY_MAX_SECONDS", 8.0)
if SCHEMA_RETRY_BASE_SECONDS > SCHEMA_RETRY_MAX_SECONDS:
    raise ValueError("SCHEMA_RETRY_BASE_SECONDS must be <= SCHEMA_RETRY_MAX_SECONDS")

CONTEXT_CACHE_TTL_SECONDS: float = _get_positive_float("CONTEXT_CACHE_TTL_SECONDS", 3600.0)
CONTEXT_CACHE_MAX_ENTRIES: int = _get_positive_int("CONTEXT_CACHE_MAX_ENTRIES", 256)
CONTEXT_CACHE_SWEEP_SECONDS: float = _get_positive_float("CONTEXT_CACHE_SWEEP_SECONDS", 600.0)

RECENT_EVENTS_LIMIT: int = _get_positive_int("RECENT_EVENTS_LIMIT", 10)

MEMGRAPH_POOL_MIN: int = _get_positive_int("MEMGRAPH_POOL_MIN", 2)
MEMGRAPH_POOL_MAX: int = _get_positive_int("MEMGRAPH_POOL_MAX", 20)
if MEMGRAPH_POOL_MIN > MEMGRAPH_POOL_MAX:
    raise ValueError("MEMGRAPH_POOL_MIN must be <= MEMGRAPH_POOL_MAX")
MEMGRAPH_POOL_ACQUIRE_TIMEOUT: float = _get_positive_float("MEMGRAPH_POOL_ACQUIRE_TIMEOUT", 30.0)
MEMGRAPH_POOL_IDLE_TIMEOUT: float = _get_positive_float("MEMGRAPH_POOL_IDLE_TIMEOUT", 300.0)


def _require_env(name: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        raise RuntimeError(f"{name} is not configured: it must be set explicitly.")
    return raw.strip()


def require_memgraph_host() -> str:
    return _require_env("MEMGRAPH_HOST")


def require_memgraph_port() -> int:
    raw = _require_env("MEMGRAPH_PORT")
    try:
        port = int(raw)
    except ValueError as exc:
        raise ValueError("MEMGRAPH_PORT must be an integer") from exc
    if port <= 0:
        raise ValueError("MEMGRAPH_PORT must be > 0")
    return port
