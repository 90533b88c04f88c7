"""Structured logging configuration using structlog.

Console output goes to stderr, rendered for humans. An optional JSON log
file under the configured log directory receives the same events.
"""

import logging
import sys
from collections.abc import Callable, MutableMapping, Sequence
from pathlib import Path
from typing import Any, cast

import structlog

Processor = Callable[
    [Any, str, MutableMapping[str, Any]],
    MutableMapping[str, Any] | str | bytes | bytearray | tuple[Any, ...],
]

LOG_FILE_NAME = "tasktree.log"


def setup_logging(log_level: str = "INFO", log_dir: Path | None = None) -> None:
    """Configure structured logging with structlog.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for the JSON log file (if None, only console logging)
    """
    level = getattr(logging, log_level.upper())

    # stderr only: stdout carries the MCP JSON-RPC stream
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)

    shared_processors: Sequence[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.root.handlers[0].setFormatter(
        _formatter(shared_processors, structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    )
    if log_dir:
        logging.root.addHandler(_file_handler(log_dir, level, shared_processors))


def _formatter(
    shared_processors: Sequence[Processor], renderer: Processor
) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )


def _file_handler(
    log_dir: Path, level: int, shared_processors: Sequence[Processor]
) -> logging.FileHandler:
    """JSON-lines handler writing to ``log_dir/tasktree.log``; creates the directory."""
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(str(log_dir / LOG_FILE_NAME))
    handler.setLevel(level)
    handler.setFormatter(_formatter(shared_processors, structlog.processors.JSONRenderer()))
    return handler


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Structured logger
    """
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))
