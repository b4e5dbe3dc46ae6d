"""
Logging configuration for asmgr.

All modules log through get_logger(), which hangs every logger under the
"asmgr" root so a single setup call controls the whole package. The TUI owns
the terminal while it runs, so it logs to a file only; the CLI logs warnings
to stderr through Rich.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

from .settings import PATHS

ROOT_LOGGER_NAME = "asmgr"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Return a logger namespaced under asmgr."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def _level_from_env(default: int) -> int:
    value = os.environ.get("ASMGR_LOG_LEVEL")
    if not value:
        return default
    level = logging.getLevelName(value.upper())
    return level if isinstance(level, int) else default


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    console: bool = True,
    rich_console: bool = False,
    console_obj: Optional[Console] = None,
) -> logging.Logger:
    """Configure the asmgr root logger.

    Args:
        level: Logging level for the asmgr hierarchy
        log_file: Optional file to append log records to
        console: Whether to log to stderr
        rich_console: Use Rich's handler for console output
        console_obj: Rich Console to render into (defaults to stderr)

    Returns:
        The configured root logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    if console:
        if rich_console:
            handler: logging.Handler = RichHandler(
                console=console_obj or Console(stderr=True),
                show_path=False,
                rich_tracebacks=True,
            )
            handler.setFormatter(logging.Formatter("%(message)s"))
        else:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    return logger


def setup_tui_logging(log_file: Optional[Path] = None, level: Optional[int] = None) -> logging.Logger:
    """File-only logging while the TUI owns the terminal."""
    if log_file is None:
        log_file = PATHS.log_dir / "asmgr.log"
    if level is None:
        level = _level_from_env(logging.INFO)
    setup_logging(level=level, log_file=log_file, console=False)
    return get_logger("tui")


def setup_cli_logging() -> logging.Logger:
    """Warnings and above to stderr for one-shot CLI commands."""
    setup_logging(level=_level_from_env(logging.WARNING), console=True, rich_console=True)
    return get_logger("cli")


class StructuredLogger:
    """Logger wrapper that appends key=value context to each message."""

    def __init__(self, logger: logging.Logger, context: Optional[Dict[str, Any]] = None):
        self._logger = logger
        self._context = dict(context or {})

    def with_context(self, **kwargs: Any) -> "StructuredLogger":
        merged = dict(self._context)
        merged.update(kwargs)
        return StructuredLogger(self._logger, merged)

    def _format(self, msg: str, extra: Dict[str, Any]) -> str:
        fields = dict(self._context)
        fields.update(extra)
        if not fields:
            return msg
        suffix = " ".join(f"{k}={v}" for k, v in fields.items())
        return f"{msg} {suffix}"

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._logger.debug(self._format(msg, kwargs))

    def info(self, msg: str, **kwargs: Any) -> None:
        self._logger.info(self._format(msg, kwargs))

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._logger.warning(self._format(msg, kwargs))

    def error(self, msg: str, **kwargs: Any) -> None:
        self._logger.error(self._format(msg, kwargs))

    def exception(self, msg: str, **kwargs: Any) -> None:
        self._logger.exception(self._format(msg, kwargs))


def get_structured_logger(name: str) -> StructuredLogger:
    return StructuredLogger(get_logger(name))
