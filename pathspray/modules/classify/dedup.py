"""Near-duplicate suppression for emitted baselines."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import Optional

from pathspray.core.logger import get_logger
from pathspray.models.baseline import Baseline
from pathspray.modules.classify.simhash import distance

logger = get_logger(__name__)


class Deduplicator:
    """
    Rolling window of recently emitted baselines per status class.

    A baseline is a duplicate when its simhash is within `threshold` bits
    of any baseline in the window for the same status class (2xx, 3xx...)
    that redirects to the same location.
    Workers share one instance; every check-then-add runs under a lock.
    """

    def __init__(self, threshold: int = 5, window: int = 256):
        """
        Initialize deduplicator.

        Args:
            threshold: Maximum simhash distance treated as duplicate
            window: Baselines kept per status class
        """
        self.threshold = threshold
        self.window = window
        self._seen: dict[int, deque[Baseline]] = defaultdict(lambda: deque(maxlen=self.window))
        self._lock = asyncio.Lock()
        self.suppressed = 0

    def _find_similar(self, baseline: Baseline) -> Optional[Baseline]:
        for previous in self._seen[baseline.status_class]:
            if previous.redirect_url != baseline.redirect_url:
                continue
            if distance(previous.simhash, baseline.simhash) <= self.threshold:
                return previous
        return None

    async def check_and_add(self, baseline: Baseline) -> bool:
        """
        Check a baseline against the window and remember it if new.

        Args:
            baseline: Emit-eligible baseline

        Returns:
            True if it duplicates an earlier baseline, False if it was added
        """
        async with self._lock:
            similar = self._find_similar(baseline)
            if similar is not None:
                self.suppressed += 1
                logger.debug(
                    "Duplicate suppressed",
                    url=baseline.url,
                    similar_to=similar.url,
                    status=baseline.status,
                )
                return True
            self._seen[baseline.status_class].append(baseline)
            return False

    async def seed(self, baseline: Baseline) -> None:
        """Add a reference baseline (e.g. a soft-404 page) without counting it."""
        async with self._lock:
            if self._find_similar(baseline) is None:
                self._seen[baseline.status_class].append(baseline)

    @property
    def count(self) -> int:
        """Number of baselines currently held."""
        return sum(len(items) for items in self._seen.values())
