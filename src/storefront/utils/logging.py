"""Logging configuration for the storefront.

Standard library logging carries the handlers; structlog formats the records.
Development gets a colored console renderer, production and staging emit JSON.
Gateway credentials and payment signatures are masked before rendering.
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Any

import structlog

_ENV_LEVELS = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Event keys that may carry payment credentials
SENSITIVE_KEYS = frozenset({"signature", "key_secret", "razorpay_signature", "authorization"})

_QUIET_LOGGERS = ("protean", "urllib3", "sqlalchemy.engine", "uvicorn.access")


def current_env() -> str:
    return (os.getenv("ENV") or os.getenv("ENVIRONMENT") or os.getenv("PROTEAN_ENV") or "development").lower()


def get_log_level() -> str:
    """Log level for the current environment. ``LOG_LEVEL`` wins when set."""
    return os.getenv("LOG_LEVEL", _ENV_LEVELS.get(current_env(), "INFO")).upper()


def _rotating_handler(path: Path, level) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        filename=path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def setup_stdlib_logging(level: str | None = None, log_dir: str | None = "logs") -> None:
    """Route the root logger to stdout and, when ``log_dir`` is set, to
    ``storefront.log`` plus an errors-only ``storefront_error.log``."""
    log_level = level or get_log_level()

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers = []

    stdout = logging.StreamHandler(sys.stdout)
    stdout.setLevel(log_level)
    root.addHandler(stdout)

    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(exist_ok=True)
        root.addHandler(_rotating_handler(directory / "storefront.log", log_level))
        root.addHandler(_rotating_handler(directory / "storefront_error.log", logging.ERROR))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def mask_sensitive(_, __, event_dict: dict) -> dict:
    """structlog processor replacing credential values with a fixed mask."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def _renderer():
    if current_env() in ("production", "staging"):
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=True,
        exception_formatter=structlog.dev.RichTracebackFormatter(show_locals=False, max_frames=2),
    )


def setup_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            mask_sensitive,
            _renderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging(level: str | None = None, log_dir: str | None = "logs") -> None:
    """Configure stdlib handlers and structlog for the storefront process."""
    setup_stdlib_logging(level=level, log_dir=log_dir)
    setup_structlog()


def add_context(**kwargs: Any) -> None:
    """Bind values (request id, customer id) to every later log line in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
