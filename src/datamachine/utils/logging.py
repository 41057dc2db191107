"""Logging setup for the Data Machine engine.

Every record is tagged with the active agent (``pipeline:<step>`` or
``chat``) so interleaved pipeline and chat requests can be told apart in a
single log file.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

from ..ai.agent_context import get_agent_context

__all__ = ["setup_logging", "get_logger", "get_log_path", "AgentContextFilter"]

_DEFAULT_LOG_DIR = Path.home() / ".datamachine" / "logs"
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(agent)-8s | %(name)s | %(message)s"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai", "anthropic")
_CONFIGURED = False
_LOG_PATH: Path | None = None


class AgentContextFilter(logging.Filter):
    """Attach an ``agent`` attribute describing the active agent context."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = get_agent_context()
        if context is None:
            record.agent = "-"
        elif context.context_id:
            record.agent = f"{context.agent_type.value}:{context.context_id}"
        else:
            record.agent = context.agent_type.value
        return True


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Configure root logging with a rotating log file and optional console output.

    Args:
        level: Root log level.
        log_dir: Directory for ``datamachine.log``. Defaults to
            ``$DATAMACHINE_LOG_DIR`` or ``~/.datamachine/logs``.
        console: Also log to stderr.
        max_bytes: Rotation threshold for the log file.
        backup_count: Number of rotated files kept.
        force: Reconfigure even if logging was already set up.

    Returns:
        Path of the active log file.
    """
    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    target_dir = Path(log_dir or os.environ.get("DATAMACHINE_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / "datamachine.log"

    formatter = logging.Formatter(fmt=_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    context_filter = AgentContextFilter()

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)

    quiet_level = max(level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path


def get_logger(name: str) -> logging.Logger:
    """Return a module-specific logger."""

    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """Return the currently configured log file if available."""

    return _LOG_PATH
