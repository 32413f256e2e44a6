"""Configuration schema dataclasses for lspbridge.

All fields have defaults so partial configs from several files can be
merged before conversion.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ServerConfig:
    """How to launch and talk to one language server.

    Example config.yaml:
        server:
          command: ansible-language-server
          args: ["--stdio"]
          language_id: ansible
          env:
            ANSIBLE_CONFIG: "${HOME}/.ansible.cfg"
          initialization_options:
            validation:
              enabled: true
    """

    command: str | None = None  # Resolved executable path or name on PATH
    args: list[str] = field(default_factory=lambda: ["--stdio"])
    workspace_path: str = "."  # Working directory and root URI of the session
    env: dict[str, str] = field(default_factory=dict)  # Supports ${VAR}
    language_id: str | None = None  # Default languageId for didOpen
    initialization_options: dict[str, Any] | None = None
    enabled: bool = True  # False: the CLI refuses to start the server


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # TRACE, DEBUG, VERBOSE, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, takes precedence over level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object."""

    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Unknown top-level sections are preserved for callers
    extra: dict[str, Any] = field(default_factory=dict)
