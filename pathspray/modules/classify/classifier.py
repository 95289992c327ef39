"""Response classification: status sets, expressions and duplicate suppression."""

from __future__ import annotations

from typing import Optional

from pathspray.core.config import ClassifierConfig, DuplicatePolicy
from pathspray.core.logger import get_logger
from pathspray.models.baseline import Baseline, Verdict, VerdictAction
from pathspray.modules.classify.dedup import Deduplicator
from pathspray.modules.classify.expression import Predicate, compile_expression

logger = get_logger(__name__)


class ResponseClassifier:
    """
    Maps a baseline to a verdict.

    `classify` is a pure function of the baseline, the task depth and the
    configuration. Duplicate suppression is the only stateful step and is
    applied separately by `suppress_duplicates`.
    """

    def __init__(
        self,
        config: Optional[ClassifierConfig] = None,
        deduplicator: Optional[Deduplicator] = None,
    ):
        """
        Initialize classifier and compile its expressions.

        Args:
            config: Classifier configuration
            deduplicator: Shared duplicate window (one per run)

        Raises:
            ExpressionError: If any expression fails to compile
        """
        self.config = config or ClassifierConfig()
        self.deduplicator = deduplicator or Deduplicator(
            threshold=self.config.distance,
            window=self.config.dedup_window,
        )

        self.match: Optional[Predicate] = None
        self.filter: Optional[Predicate] = None
        if self.config.match:
            self.match = compile_expression(self.config.match)
        if self.config.filter:
            self.filter = compile_expression(self.config.filter)
        self.recursive: Predicate = compile_expression(self.config.recursive)

    def _status_verdict(self, baseline: Baseline) -> tuple[VerdictAction, str]:
        status = baseline.status
        if status in self.config.white_status:
            return VerdictAction.EMIT, "white status"
        if status in self.config.black_status:
            return VerdictAction.DISCARD, "black status"
        if status in self.config.fuzzy_status:
            return VerdictAction.FUZZY, "fuzzy status"
        return VerdictAction.EMIT, "unlisted status"

    def should_recurse(self, baseline: Baseline, depth: int) -> bool:
        """Recursive rule holds and the task is still above the depth limit."""
        return depth < self.config.depth and self.recursive(baseline)

    def classify(self, baseline: Baseline, depth: int = 0) -> Verdict:
        """
        Classify a baseline.

        Order: filter expression, match expression, status sets. The
        recursion decision is made independently of the action.

        Args:
            baseline: Response to classify
            depth: Depth of the task that produced it

        Returns:
            Verdict before duplicate suppression
        """
        recurse = self.should_recurse(baseline, depth)

        if self.filter is not None and self.filter(baseline):
            return Verdict(action=VerdictAction.DISCARD, recurse=recurse, reason="filtered")

        if self.match is not None and not self.match(baseline):
            return Verdict(action=VerdictAction.DISCARD, recurse=recurse, reason="not matched")

        action, reason = self._status_verdict(baseline)
        return Verdict(action=action, recurse=recurse, reason=reason)

    async def suppress_duplicates(self, baseline: Baseline, verdict: Verdict) -> Verdict:
        """
        Apply near-duplicate suppression to an emit verdict.

        Non-emit verdicts pass through untouched. A duplicate is discarded or
        downgraded to fuzzy depending on the configured policy.
        """
        if not verdict.is_emit:
            return verdict

        if not await self.deduplicator.check_and_add(baseline):
            return verdict

        action = (
            VerdictAction.FUZZY
            if self.config.duplicate_policy == DuplicatePolicy.FUZZY
            else VerdictAction.DISCARD
        )
        return Verdict(action=action, recurse=verdict.recurse, reason="duplicate")

    async def evaluate(self, baseline: Baseline, depth: int = 0) -> Verdict:
        """Full decision: classify, then suppress duplicates."""
        return await self.suppress_duplicates(baseline, self.classify(baseline, depth))
