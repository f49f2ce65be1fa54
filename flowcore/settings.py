"""Load flowcore settings from config/settings.yaml."""

import logging
from pathlib import Path
from typing import Any

import yaml

from flowcore.sync.remote import parse_route

logger = logging.getLogger(__name__)

_DEFAULTS: dict[str, Any] = {
    "cache": {
        "default_ttl_ms": 300_000,  # 5 minutes
    },
    "connectivity": {
        "initial_online": True,
        # Empty probe_url disables polling; the host app then calls monitor.update().
        "probe_url": "",
        "probe_interval": 15.0,
        "probe_timeout": 5.0,
    },
    "sync": {
        "backend": "sqlite",
        "db_path": "data/sync.db",
        "data_dir": "data/sync",
        "storage_key": "sync_queue",
        "max_retries": 3,
        "write_attempts": 3,
        "periodic_interval_ms": 30_000,
        "remote": {
            "base_url": "",
            "timeout": 10.0,
            "routes": {},
        },
    },
    "auth": {
        "service_name": "flowcore",
        "token_env": "FLOWCORE_ACCESS_TOKEN",
    },
    "logging": {
        "file": "data/logs/flowcore.log",
        "level": "INFO",
        "log_to_console": False,
        "max_bytes": 10485760,  # 10 MB
        "backup_count": 3,
        # Per-logger level overrides, e.g. {"flowcore.sync": "DEBUG"}
        "loggers": {},
    },
}

_cached: dict[Path, dict[str, Any]] = {}


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base recursively. Mutates base."""
    for key, value in overlay.items():
        if value is None:
            continue
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def get_default_settings() -> dict[str, Any]:
    """Return a deep copy of default settings."""
    return _deep_copy_nested(_DEFAULTS)


def get_setting(settings: dict[str, Any], path: str, default: Any = None) -> Any:
    """Get a nested value by dot path (e.g. 'sync.max_retries')."""
    current: Any = settings
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def reload_settings() -> None:
    """Drop cached settings for every config dir. Call after settings.yaml changes."""
    _cached.clear()


def load_settings(config_dir: Path | None = None) -> dict[str, Any]:
    """Defaults merged with <config_dir>/settings.yaml, cached per directory.

    A missing file yields the defaults. An unreadable or malformed file is
    logged and ignored, so the sync worker still starts with defaults.
    """
    if config_dir is None:
        config_dir = Path(__file__).resolve().parent.parent / "config"
    path = config_dir / "settings.yaml"
    cached = _cached.get(path)
    if cached is not None:
        return cached

    result = get_default_settings()
    if path.exists():
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as e:
            logger.warning("Ignoring %s, using defaults: %s", path, e)
        else:
            if isinstance(data, dict):
                _deep_merge(result, data)
            elif data is not None:
                logger.warning("Ignoring %s: top level must be a mapping", path)

    _cached[path] = result
    return result


def validate_settings(settings: dict[str, Any]) -> list[str]:
    """Return human-readable problems that would stop the hub from starting."""
    problems: list[str] = []
    backend = get_setting(settings, "sync.backend")
    if backend not in ("sqlite", "json"):
        problems.append(f"sync.backend must be 'sqlite' or 'json', got {backend!r}")
    for path in ("sync.max_retries", "sync.write_attempts", "cache.default_ttl_ms"):
        value = get_setting(settings, path)
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            problems.append(f"{path} must be a positive integer, got {value!r}")
    interval = get_setting(settings, "sync.periodic_interval_ms")
    if isinstance(interval, bool) or not isinstance(interval, int) or interval < 0:
        problems.append(
            f"sync.periodic_interval_ms must be 0 (off) or positive, got {interval!r}"
        )
    routes = get_setting(settings, "sync.remote.routes") or {}
    if not isinstance(routes, dict):
        problems.append("sync.remote.routes must be a mapping of kind -> 'METHOD /path'")
    else:
        for kind, route in routes.items():
            try:
                parse_route(str(route))
            except ValueError as e:
                problems.append(f"sync.remote.routes.{kind}: {e}")
    return problems


def _deep_copy_nested(obj: Any) -> Any:
    """Return a deep copy of nested dicts/lists for defaults."""
    if isinstance(obj, dict):
        return {k: _deep_copy_nested(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_deep_copy_nested(x) for x in obj]
    return obj
