"""Logging for agentctl.

Two streams exist side by side: the ``agentctl`` logger tree, which is what
the console shows, and each deployment's audit log, which ``DeploymentState``
persists next to the record. Audit entries are forwarded to the
``agentctl.audit`` logger as they are persisted, so ``-v`` shows a deployment
progressing without reading its log file.
"""

import logging
import sys
from enum import Enum
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

AUDIT_LOGGER = "agentctl.audit"

# Audit entries say "warn", the stdlib says "warning".
_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LogLevel(str, Enum):
    """Console log level, as written in config files."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def numeric(self) -> int:
        return _LEVELS[self.value]


def to_python_level(level: str) -> int:
    """Map an audit or config level name to a stdlib logging level.

    Raises:
        ValueError: If the name is not a known level
    """
    try:
        return _LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level}") from None


def resolve_level(verbose: int, quiet: bool, configured: LogLevel) -> LogLevel:
    """Pick the console level. Command-line flags win over the config file."""
    if verbose >= 2:
        return LogLevel.DEBUG
    if verbose >= 1:
        return LogLevel.INFO
    if quiet:
        return LogLevel.ERROR
    return configured


def setup_logging(
    level: LogLevel = LogLevel.INFO,
    rich_output: bool = True,
) -> logging.Logger:
    """Install a single stderr handler on the root logger.

    Args:
        level: Console log level
        rich_output: Render through Rich; plain timestamped lines otherwise

    Returns:
        The ``agentctl`` logger
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler: logging.Handler
    if rich_output:
        handler = RichHandler(
            console=Console(stderr=True),
            show_time=True,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)-7s %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root_logger.addHandler(handler)
    root_logger.setLevel(level.numeric)

    logger = logging.getLogger("agentctl")
    logger.setLevel(level.numeric)

    # httpx reports every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return logger


def get_logger(name: str) -> "StructuredLogger":
    """Get a logger for a module, placed under ``agentctl.``."""
    return StructuredLogger(name)


class StructuredLogger:
    """Logger that appends bound and per-call context as ``key=value`` pairs."""

    def __init__(self, name: str):
        if not name.startswith("agentctl"):
            name = f"agentctl.{name}"
        self._logger = logging.getLogger(name)
        self._context: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self._logger.name

    def bind(self, **kwargs: Any) -> "StructuredLogger":
        """Create a new logger with additional context."""
        new_logger = StructuredLogger(self._logger.name)
        new_logger._context = {**self._context, **kwargs}
        return new_logger

    def _format_message(self, message: str, **kwargs: Any) -> str:
        context = {**self._context, **kwargs}
        if context:
            context_str = " ".join(f"{k}={v}" for k, v in context.items())
            return f"{message} [{context_str}]"
        return message

    def log(self, level: str | int, message: str, **kwargs: Any) -> None:
        """Log at a level given by name (``warn`` included) or number."""
        numeric = level if isinstance(level, int) else to_python_level(level)
        if self._logger.isEnabledFor(numeric):
            self._logger.log(numeric, self._format_message(message, **kwargs))

    def debug(self, message: str, **kwargs: Any) -> None:
        self._logger.debug(self._format_message(message, **kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(self._format_message(message, **kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        self._logger.error(self._format_message(message, **kwargs))

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log at ERROR with the active traceback."""
        self._logger.exception(self._format_message(message, **kwargs))


_audit = StructuredLogger(AUDIT_LOGGER)


def mirror_audit_entry(deployment_id: str, level: str, message: str, component: str) -> None:
    """Forward one persisted audit entry to the ``agentctl.audit`` logger."""
    _audit.log(level, message, deployment=deployment_id, component=component)
