"""Structured logging using structlog."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Optional, TextIO

import structlog
from structlog.typing import Processor

_log_file: Optional[TextIO] = None


def setup_logging(
    level: str = "WARNING",
    json_format: bool = False,
    log_file: Optional[Path] = None,
) -> None:
    """
    Configure structlog for a spray run.

    Log lines go to stderr, or are appended to `log_file` when given.
    Console rendering is colored only when writing to a terminal.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Render one JSON object per line
        log_file: Optional file path for logging output
    """
    global _log_file

    close_logging()
    numeric_level = getattr(logging, level.upper())
    stream: TextIO = sys.stderr
    if log_file:
        _log_file = stream = open(log_file, "a", encoding="utf-8")

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=stream.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )


def close_logging() -> None:
    """Close the log file opened by `setup_logging`, logging to stderr again."""
    global _log_file

    if _log_file is None:
        return
    structlog.configure(logger_factory=structlog.PrintLoggerFactory(file=sys.stderr))
    _log_file.close()
    _log_file = None


def get_logger(name: Optional[str] = None, **initial_context: Any) -> structlog.BoundLogger:
    """Get a structlog logger, bound with `initial_context` when given."""
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


def log_task_start(base_url: str, offset: int, total: int, depth: int, **context: Any) -> None:
    """Log the start of a spray task."""
    logger = get_logger("tasks")
    logger.info(
        f"Starting task {base_url}",
        task=base_url,
        action="task_start",
        offset=offset,
        total=total,
        depth=depth,
        **context,
    )


def log_task_complete(
    base_url: str,
    state: str,
    req_number: int,
    duration: float,
    **context: Any,
) -> None:
    """Log the end of a spray task, at warning level when it did not finish cleanly."""
    logger = get_logger("tasks")
    level = "info" if state == "completed" else "warning"
    getattr(logger, level)(
        f"Task {base_url} {state}",
        task=base_url,
        action="task_complete",
        state=state,
        req_number=req_number,
        duration_seconds=round(duration, 2),
        **context,
    )


def log_baseline(
    stream: str,
    url: str,
    status: int,
    **details: Any,
) -> None:
    """Log an emitted baseline when no output file is configured."""
    logger = get_logger("results")
    logger.warning(
        f"[{status}] {url}",
        stream=stream,
        url=url,
        status=status,
        **details,
    )
