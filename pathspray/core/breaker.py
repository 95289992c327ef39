"""Per-task circuit breaker driven by transport errors."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from pathspray.core.config import BreakerConfig
from pathspray.core.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ErrorCounter:
    """Error bookkeeping for one task."""
    consecutive_errors: int = 0
    window_errors: int = 0
    window_start: int = 0


class CircuitBreaker:
    """
    Adaptive error monitor that aborts a task on sustained failure.

    Two cadences are evaluated:
    - every `error_period` errors, the consecutive error count is compared
      with `break_threshold`;
    - every `check_period` completed requests, the errors seen in that
      window are compared with `break_threshold` and the window restarts.

    Once tripped the breaker stays tripped. Force mode sets every cadence
    and the threshold to `UNLIMITED`, so it never trips.
    """

    def __init__(self, config: Optional[BreakerConfig] = None, name: str = ""):
        """
        Initialize circuit breaker.

        Args:
            config: Breaker thresholds
            name: Task base URL, for logging
        """
        self.config = config or BreakerConfig()
        self.name = name
        self.counter = ErrorCounter()
        self.requests = 0
        self.errors = 0
        self.reason: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def tripped(self) -> bool:
        return self.reason is not None

    def _trip(self, reason: str) -> None:
        self.reason = reason
        logger.warning(
            "Circuit breaker tripped",
            task=self.name,
            reason=reason,
            requests=self.requests,
            errors=self.errors,
        )

    def _check_window(self) -> None:
        if self.requests - self.counter.window_start < self.config.check_period:
            return
        if self.counter.window_errors >= self.config.break_threshold:
            self._trip(
                f"{self.counter.window_errors} errors in the last "
                f"{self.requests - self.counter.window_start} requests"
            )
        self.counter.window_errors = 0
        self.counter.window_start = self.requests

    async def record_success(self) -> bool:
        """
        Record a completed request.

        Returns:
            True if the breaker is tripped
        """
        async with self._lock:
            self.requests += 1
            self.counter.consecutive_errors = 0
            if not self.tripped:
                self._check_window()
            return self.tripped

    async def record_error(self) -> bool:
        """
        Record a transport error.

        Returns:
            True if the breaker is tripped
        """
        async with self._lock:
            self.requests += 1
            self.errors += 1
            self.counter.consecutive_errors += 1
            self.counter.window_errors += 1

            if self.tripped:
                return True

            if self.errors % self.config.error_period == 0:
                if self.counter.consecutive_errors >= self.config.break_threshold:
                    self._trip(f"{self.counter.consecutive_errors} consecutive errors")
                    return True

            self._check_window()
            return self.tripped
