"""
pathspray v1.0.0 - Concurrent web path fuzzer.
"""

__version__ = "1.0.0"
__author__ = "pathspray Team"

from pathspray.core.config import Settings, get_settings, load_settings
from pathspray.core.logger import get_logger, setup_logging

__all__ = [
    "__version__",
    "Settings",
    "get_settings",
    "load_settings",
    "get_logger",
    "setup_logging",
]
