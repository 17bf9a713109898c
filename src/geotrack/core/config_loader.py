"""Load and query geotrack JSON config files."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("config/config.json")
_CONFIG_CACHE: dict[Path, tuple[int, dict[str, Any]]] = {}


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[3]


def resolve_config_path(config_path: str | Path | None = None) -> Path:
    """Resolve config path against repo root.

    Priority:
    1. explicit function argument
    2. `GEOTRACK_CONFIG_PATH` environment variable
    3. default `config/config.json`
    """
    raw_path: str | Path | None = config_path or os.getenv("GEOTRACK_CONFIG_PATH")
    candidate = Path(raw_path) if raw_path else DEFAULT_CONFIG_PATH
    if not candidate.is_absolute():
        candidate = _repo_root() / candidate
    return candidate.resolve()


def load_config(config_path: str | Path | None = None, *, use_cache: bool = True) -> dict[str, Any]:
    """Load config JSON as a dictionary."""
    resolved = resolve_config_path(config_path)
    if not resolved.exists():
        raise FileNotFoundError(f"Config file not found: {resolved}")

    mtime_ns = resolved.stat().st_mtime_ns
    if use_cache and resolved in _CONFIG_CACHE:
        cached_mtime_ns, cached_payload = _CONFIG_CACHE[resolved]
        if cached_mtime_ns == mtime_ns:
            return cached_payload

    try:
        payload = json.loads(resolved.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in config file: {resolved}") from exc

    if not isinstance(payload, dict):
        raise ValueError(f"Config root must be a JSON object: {resolved}")

    _CONFIG_CACHE[resolved] = (mtime_ns, payload)
    return payload


def clear_config_cache() -> None:
    """Clear in-memory config cache."""
    _CONFIG_CACHE.clear()


def load_config_or_empty() -> dict[str, Any]:
    """Return the config payload, or `{}` when no usable config file exists."""
    try:
        return load_config()
    except (FileNotFoundError, ValueError):
        return {}


def _section(name: str, config: dict[str, Any] | None) -> dict[str, Any]:
    payload = config if config is not None else load_config_or_empty()
    value = payload.get(name)
    return value if isinstance(value, dict) else {}


def get_home_location(config: dict[str, Any] | None = None) -> dict[str, Any] | None:
    payload = config if config is not None else load_config_or_empty()
    value = payload.get("home_location")
    return value if isinstance(value, dict) else None


def get_location_service_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return the raw `location_service` block (empty when absent)."""
    return _section("location_service", config)


def get_position_source_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return the raw `position_source` block (empty when absent)."""
    return _section("position_source", config)


def get_geocoding_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return the raw `geocoding` block with `primary`/`fallback` always present as dicts."""
    block = _section("geocoding", config)
    primary = block.get("primary")
    fallback = block.get("fallback")
    return {
        "primary": primary if isinstance(primary, dict) else {},
        "fallback": fallback if isinstance(fallback, dict) else {},
    }
