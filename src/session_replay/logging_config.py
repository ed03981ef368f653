# ABOUTME: Logging setup that sends session_replay records to a rotating log file.
# ABOUTME: The pager owns the terminal, so level comes from the caller or SESSION_REPLAY_LOG_LEVEL.

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

ENV_LOG_LEVEL = "SESSION_REPLAY_LOG_LEVEL"
ENV_LOG_FILE = "SESSION_REPLAY_LOG_FILE"
DEFAULT_LOG_FILE = Path.home() / ".cache" / "session-replay" / "replay.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def resolve_log_file(log_file: Path | None = None) -> Path:
    if log_file is not None:
        return log_file
    env_value = os.environ.get(ENV_LOG_FILE)
    if env_value:
        return Path(env_value).expanduser()
    return DEFAULT_LOG_FILE


def setup_logging(level: str | None = None, log_file: Path | None = None) -> logging.Logger:
    """Configure the package logger with a single rotating file handler."""
    level_name = (level or os.environ.get(ENV_LOG_LEVEL) or "WARNING").upper()
    log = logging.getLogger("session_replay")
    log.setLevel(getattr(logging, level_name, logging.WARNING))
    log.propagate = False

    path = resolve_log_file(log_file)
    if any(isinstance(handler, RotatingFileHandler) for handler in log.handlers):
        return log
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = RotatingFileHandler(
            path, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
        )
    except OSError:
        handler = logging.NullHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    log.addHandler(handler)
    return log
