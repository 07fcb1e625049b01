"""Structured logging configuration."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog
from platformdirs import user_log_dir

APP_NAME = "pyagenthost"

_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def configure_logging(
    log_level: str = "INFO",
    log_dir: str | Path | None = None,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> None:
    """Configure structlog on top of the stdlib root logger.

    Two sinks:
    - stderr: WARNING and above
    - <log_dir>/agenthost.log: everything at ``log_level`` and above, JSON lines

    The file sink is skipped (console only) if the directory cannot be created.
    """
    level = log_level.upper()
    if level not in _VALID_LEVELS:
        print(f"Warning: invalid log level '{log_level}', defaulting to INFO", file=sys.stderr)
        level = "INFO"

    shared_processors: list[structlog.types.Processor] = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    json_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
    )

    root = logging.getLogger()
    root.setLevel(getattr(logging, level))
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.WARNING)
    console.setFormatter(json_formatter)
    root.addHandler(console)

    path = Path(log_dir) if log_dir is not None else Path(user_log_dir(APP_NAME))
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        print(f"Warning: cannot create log directory '{path}': {e}; logging to console only", file=sys.stderr)
        return

    file_handler = RotatingFileHandler(
        path / "agenthost.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(getattr(logging, level))
    file_handler.setFormatter(json_formatter)
    root.addHandler(file_handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)  # type: ignore[no-any-return]
