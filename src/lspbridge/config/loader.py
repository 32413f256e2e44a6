"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Deep merging of system, user and project files
- Environment variable overrides
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from lspbridge.config.paths import get_config_paths
from lspbridge.config.schema import Config, LoggingConfig, ServerConfig

_log = logging.getLogger("lspbridge.config")

_cached_config: Config | None = None

SERVER_COMMAND_ENV_VAR = "LSPBRIDGE_SERVER_COMMAND"
LOG_ENV_VAR = "LSPBRIDGE_LOG"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge override into a copy of base.

    Nested dicts merge recursively, lists and scalars are replaced, and a
    None in override leaves the base value untouched.
    """
    result = base.copy()
    for key, value in override.items():
        if value is None:
            continue
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value
    return result


def env_overrides() -> dict[str, Any]:
    """Build config dict from environment variables (highest priority)."""
    overrides: dict[str, Any] = {}

    command = os.environ.get(SERVER_COMMAND_ENV_VAR)
    if command:
        overrides.setdefault("server", {})["command"] = command

    log_path = os.environ.get(LOG_ENV_VAR)
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    return overrides


def expand_env_vars(env: dict[str, str]) -> dict[str, str]:
    """Expand ${VAR} references in env dict values.

    Unset variables expand to an empty string.
    """
    result = {}
    for key, value in env.items():
        if value.startswith("${") and value.endswith("}"):
            result[key] = os.environ.get(value[2:-1], "")
        else:
            result[key] = value
    return result


def dict_to_config(data: dict[str, Any], workspace: str | None = None) -> Config:
    """Convert merged dict to typed Config dataclass.

    Args:
        data: Merged configuration dictionary.
        workspace: Workspace used when the server section names none.
    """
    server_data = data.get("server", {})
    if not isinstance(server_data, dict):
        server_data = {}

    args = server_data.get("args")
    env = server_data.get("env", {})
    init_options = server_data.get("initialization_options")

    server = ServerConfig(
        command=server_data.get("command"),
        args=[str(a) for a in args] if isinstance(args, list) else ["--stdio"],
        workspace_path=server_data.get("workspace_path") or workspace or ".",
        env={str(k): str(v) for k, v in env.items()} if isinstance(env, dict) else {},
        language_id=server_data.get("language_id"),
        initialization_options=init_options if isinstance(init_options, dict) else None,
        enabled=bool(server_data.get("enabled", True)),
    )

    log_data = data.get("logging", {})
    if not isinstance(log_data, dict):
        log_data = {}
    verbose = log_data.get("verbose")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=verbose if isinstance(verbose, int) else None,
        file=log_data.get("file"),
    )

    known_keys = {"server", "logging"}
    extra = {k: v for k, v in data.items() if k not in known_keys}

    return Config(server=server, logging=logging_config, extra=extra)


def load_config(workspace: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config (<workspace>/.lspbridge/config.yaml)
    3. User config
    4. System config

    Only the global (workspace-less) config is cached.
    """
    global _cached_config

    if _cached_config is not None and not reload and workspace is None:
        return _cached_config

    merged: dict[str, Any] = {}
    for path in get_config_paths(workspace):
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            merged = deep_merge(merged, config_data)

    merged = deep_merge(merged, env_overrides())

    config = dict_to_config(merged, workspace=workspace)

    if workspace is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config. Useful for testing."""
    global _cached_config
    _cached_config = None
