"""Configuration management for lspbridge.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/lspbridge/ or %PROGRAMDATA%)
- User-level config (~/.config/lspbridge/, ~/.lspbridge/ or %APPDATA%)
- Project-level config (<workspace>/.lspbridge/)
- Environment variable overrides (highest priority)

Example usage:
    from lspbridge.config import load_config

    config = load_config(workspace="/path/to/project")
    print(config.server.command)
"""

from lspbridge.config.loader import (
    expand_env_vars,
    get_config,
    load_config,
    reset_config,
)
from lspbridge.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from lspbridge.config.schema import (
    Config,
    LoggingConfig,
    ServerConfig,
)

__all__ = [
    "Config",
    "LoggingConfig",
    "ServerConfig",
    "load_config",
    "get_config",
    "reset_config",
    "expand_env_vars",
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
