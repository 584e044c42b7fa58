"""Structured logging for review search.

Logs go to stderr so command output on stdout stays machine-readable.
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import FilteringBoundLogger

from .config import config

# Chatty libraries that only get through at DEBUG
NOISY_LOGGERS = ("transformers", "huggingface_hub", "filelock", "urllib3", "lancedb")


def configure_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> FilteringBoundLogger:
    """Configure structlog and the standard library root logger."""
    level_name = (level or config.app.log_level).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    log_format = log_format or config.app.log_format

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(log_level if log_level <= logging.DEBUG else logging.WARNING)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]
    if log_format == "json":
        processors += [structlog.processors.TimeStamper(fmt="iso"), structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger()


def bind_command(command: str, **values: Any) -> None:
    """Tag every following log line with the running CLI command."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(command=command, **values)


def get_logger(name: str) -> FilteringBoundLogger:
    """Get a logger instance for the given name."""
    return structlog.get_logger(name)


logger = configure_logging()
