"""Core modules for pathspray."""

from pathspray.core.config import ConfigurationError, Settings, get_settings, load_settings
from pathspray.core.logger import close_logging, get_logger, setup_logging
from pathspray.core.database import Database
from pathspray.core.breaker import CircuitBreaker
from pathspray.core.checkpoint import (
    Checkpointer,
    JsonStatistorStore,
    SqliteStatistorStore,
    StatistorStore,
    open_store,
)
from pathspray.core.exporter import OutputSink, OutputSinks
from pathspray.core.pool import TaskPool
from pathspray.core.runner import Runner, load_targets, run_spray

__all__ = [
    "ConfigurationError",
    "Settings",
    "get_settings",
    "load_settings",
    "get_logger",
    "setup_logging",
    "close_logging",
    "Database",
    "CircuitBreaker",
    "Checkpointer",
    "JsonStatistorStore",
    "SqliteStatistorStore",
    "StatistorStore",
    "open_store",
    "OutputSink",
    "OutputSinks",
    "TaskPool",
    "Runner",
    "load_targets",
    "run_spray",
]
