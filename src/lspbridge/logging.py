"""Logging for lspbridge.

Everything logs under the "lspbridge" logger tree:

    lspbridge.client     session lifecycle
    lspbridge.server     server stderr and window/logMessage output
    lspbridge.transport  JSON-RPC traffic (individual frames at TRACE)
    lspbridge.config     config file discovery

A library caller can attach its own handlers and skip setup_logging()
entirely. The CLI calls it once with the merged LoggingConfig.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lspbridge.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

LOG_ENV_VAR = "LSPBRIDGE_LOG"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

logger = logging.getLogger("lspbridge")

_handlers: list[logging.Handler] = []

_LEVEL_NAMES = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "VERBOSE": VERBOSE,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# -v count after the CLI's +1 offset: 0 errors only .. 4 every frame
_VERBOSITY_LEVELS = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)


class _LowercaseLevelFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Effective level for a LoggingConfig. `verbose` wins over `level`."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        index = min(max(config.verbose, 0), len(_VERBOSITY_LEVELS) - 1)
        return _VERBOSITY_LEVELS[index]
    if config.level:
        return _LEVEL_NAMES.get(config.level.upper(), logging.INFO)
    return logging.INFO


def resolve_log_path(config: LoggingConfig | None) -> str | None:
    """Log file from config, falling back to LSPBRIDGE_LOG; ~ is expanded."""
    path = config.file if config and config.file else os.environ.get(LOG_ENV_VAR)
    return os.path.expanduser(path) if path else None


def _stderr_handler() -> logging.Handler | None:
    # A piped stderr may belong to a host parsing it; stay quiet there
    if not sys.stderr.isatty():
        return None
    return logging.StreamHandler(sys.stderr)


def _file_handler(path: str) -> logging.Handler | None:
    try:
        return logging.FileHandler(path, mode="a", encoding="utf-8")
    except OSError as e:
        if sys.stderr.isatty():
            print(f"[lspbridge] Failed to open log file {path}: {e}", file=sys.stderr)
        return None


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Attach lspbridge's handler to the "lspbridge" logger.

    Only the first call has an effect until reset_logging() is called.
    Output goes to the configured file, or to stderr when it is a
    terminal, or nowhere.
    """
    if _handlers:
        return

    level = resolve_level(config)
    logger.setLevel(level)

    log_path = resolve_log_path(config)
    handler = _file_handler(log_path) if log_path else None
    if handler is None:
        handler = _stderr_handler()
    if handler is None:
        return

    handler.setLevel(level)
    handler.setFormatter(_LowercaseLevelFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    _handlers.append(handler)


def reset_logging() -> None:
    """Detach and close handlers added by setup_logging()."""
    while _handlers:
        handler = _handlers.pop()
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the "lspbridge" logger, or its child `name`."""
    return logger.getChild(name) if name else logger
