"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from .patterns import DEFAULT_HOST_URL_MARKERS, DEFAULT_PLUGIN_URL_MARKERS
from .types import (
    LOG_LEVELS,
    BridgeConfig,
    CacheConfig,
    ConsoleConfig,
    ExecutionConfig,
    HostConfig,
    PortConfig,
    TruncationConfig,
)

CONFIG_ENV_VAR = "SANDBOX_BRIDGE_CONFIG"

CONFIG_FILENAMES = [
    "sandbox-bridge.yaml",
    "sandbox-bridge.yml",
    "sandbox-bridge.json",
]

_PYTHON_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _discover_config() -> Path | None:
    """Env var first, then search CWD and parent dirs up to home for a config file."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)

    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _build_config(raw: dict[str, Any]) -> BridgeConfig:
    """Build a BridgeConfig from a raw dict."""
    # Console monitor
    console_raw = raw.get("console", {})
    trunc_raw = console_raw.get("truncation", {})
    truncation = TruncationConfig(
        max_string_length=trunc_raw.get("max_string_length", 500),
        max_array_length=trunc_raw.get("max_array_length", 10),
        max_object_depth=trunc_raw.get("max_object_depth", 3),
        max_object_keys=trunc_raw.get("max_object_keys", 10),
    )
    console = ConsoleConfig(
        buffer_size=console_raw.get("buffer_size", 1000),
        filter_levels=console_raw.get("filter_levels", list(LOG_LEVELS)),
        truncation=truncation,
        plugin_url_markers=console_raw.get("plugin_url_markers", list(DEFAULT_PLUGIN_URL_MARKERS)),
        host_url_markers=console_raw.get("host_url_markers", list(DEFAULT_HOST_URL_MARKERS)),
    )

    # Execution bridge
    exec_raw = raw.get("execution", {})
    execution = ExecutionConfig(
        worker_marker=exec_raw.get("worker_marker", "figma"),
        ui_entry_point=exec_raw.get("ui_entry_point", "executeCode"),
        ui_timeout_ms=exec_raw.get("ui_timeout_ms", 5000),
        worker_timeout_ms=exec_raw.get("worker_timeout_ms", 30_000),
        timeout_grace_ms=exec_raw.get("timeout_grace_ms", 2000),
        max_attempts=exec_raw.get("max_attempts", 2),
        retry_delay=exec_raw.get("retry_delay", 0.1),
    )

    # Response cache
    cache_raw = raw.get("cache", {})
    cache = CacheConfig(
        ttl_seconds=cache_raw.get("ttl_seconds", 300.0),
        max_entries=cache_raw.get("max_entries", 10),
        token_budget=cache_raw.get("token_budget", 25_000),
    )

    # Ports
    ports_raw = raw.get("ports", {})
    ports = PortConfig(
        preferred_port=ports_raw.get("preferred_port", 9223),
        range_size=ports_raw.get("range_size", 10),
        host=ports_raw.get("host", "localhost"),
        advertisement_dir=ports_raw.get("advertisement_dir"),
        file_prefix=ports_raw.get("file_prefix", "sandbox-bridge-"),
    )

    # Host connection
    host_raw = raw.get("host", {})
    host = HostConfig(
        debug_endpoint=host_raw.get("debug_endpoint", "http://localhost:9222"),
        url_marker=host_raw.get("url_marker", "figma.com"),
        connect_timeout=host_raw.get("connect_timeout", 5.0),
    )

    return BridgeConfig(
        version=raw.get("version", "1.0"),
        log_level=raw.get("log_level", "INFO"),
        console=console,
        execution=execution,
        cache=cache,
        ports=ports,
        host=host,
    )


def validate_config(config: BridgeConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    if config.log_level.upper() not in _PYTHON_LOG_LEVELS:
        errors.append(f"Unknown log_level '{config.log_level}'")

    console = config.console
    if console.buffer_size < 1:
        errors.append("console.buffer_size must be >= 1")
    unknown = [lvl for lvl in console.filter_levels if lvl not in LOG_LEVELS]
    if unknown:
        errors.append(
            f"console.filter_levels has unknown level(s) {unknown}; "
            f"expected a subset of {list(LOG_LEVELS)}"
        )
    trunc = console.truncation
    for name in ("max_string_length", "max_array_length", "max_object_depth", "max_object_keys"):
        if getattr(trunc, name) < 1:
            errors.append(f"console.truncation.{name} must be >= 1")

    execution = config.execution
    if not execution.worker_marker.isidentifier():
        errors.append(f"execution.worker_marker '{execution.worker_marker}' is not an identifier")
    if not execution.ui_entry_point.isidentifier():
        errors.append(f"execution.ui_entry_point '{execution.ui_entry_point}' is not an identifier")
    if execution.ui_timeout_ms <= 0 or execution.worker_timeout_ms <= 0:
        errors.append("execution timeouts must be > 0")
    if execution.max_attempts < 1:
        errors.append("execution.max_attempts must be >= 1")
    if execution.retry_delay < 0:
        errors.append("execution.retry_delay must be >= 0")

    cache = config.cache
    if cache.ttl_seconds <= 0:
        errors.append("cache.ttl_seconds must be > 0")
    if cache.max_entries < 1:
        errors.append("cache.max_entries must be >= 1")
    if cache.token_budget < 1:
        errors.append("cache.token_budget must be >= 1")

    ports = config.ports
    if ports.range_size < 1:
        errors.append("ports.range_size must be >= 1")
    last_port = ports.preferred_port + ports.range_size - 1
    if ports.preferred_port < 1 or last_port > 65535:
        errors.append(
            f"ports range {ports.preferred_port}-{last_port} must lie within 1-65535"
        )
    if not ports.file_prefix:
        errors.append("ports.file_prefix must not be empty")

    if not config.host.debug_endpoint.startswith(("http://", "https://")):
        errors.append(f"host.debug_endpoint '{config.host.debug_endpoint}' must be an http(s) URL")

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> BridgeConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        # Return defaults
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    logging.getLogger(__name__).debug("Loaded config from %s", path)
    return _build_config(raw)
