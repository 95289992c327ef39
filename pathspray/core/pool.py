"""Per-task worker pool: concurrent requests over one candidate range."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Iterator, Optional

from pathspray.core.breaker import CircuitBreaker
from pathspray.core.checkpoint import Checkpointer
from pathspray.core.config import BreakerConfig
from pathspray.core.logger import get_logger, log_task_complete, log_task_start
from pathspray.models.baseline import Baseline
from pathspray.models.task import Statistor, Task, TaskReport, TaskState
from pathspray.modules.classify.dedup import Deduplicator
from pathspray.modules.http.requester import RequestFailed, Requester, random_path
from pathspray.modules.words.candidates import CandidateGenerator

logger = get_logger(__name__)

ResultCallback = Callable[[Task, Baseline], Awaitable[None]]


class TaskPool:
    """
    Runs `threads` workers over the candidate range of a single task.

    Workers pull indices from one shared iterator, so every index in
    `[task.offset, task.total)` is attempted at most once. `req_number`
    counts indices finished since `offset`, whether requested, dropped by a
    rule or failed. Completion order is not tracked, so resuming from
    `offset + req_number` is best effort.
    """

    def __init__(
        self,
        task: Task,
        generator: CandidateGenerator,
        requester: Requester,
        breaker_config: Optional[BreakerConfig] = None,
        checkpointer: Optional[Checkpointer] = None,
        on_result: Optional[ResultCallback] = None,
        threads: int = 20,
        deduplicator: Optional[Deduplicator] = None,
        run_cancel: Optional[asyncio.Event] = None,
    ):
        """
        Initialize task pool.

        Args:
            task: Task to run
            generator: Candidate sequence shared by every task of the run
            requester: Shared HTTP requester
            breaker_config: Error thresholds for this task's breaker
            checkpointer: Snapshot writer
            on_result: Called for every completed request
            threads: Concurrent workers for this task
            deduplicator: When set, a random path is requested first and its
                response seeded as a soft-404 reference
            run_cancel: Run-level stop signal
        """
        self.task = task
        self.generator = generator
        self.requester = requester
        self.breaker = CircuitBreaker(breaker_config, name=task.base_url)
        self.checkpointer = checkpointer
        self.on_result = on_result
        self.threads = threads
        self.deduplicator = deduplicator
        self.run_cancel = run_cancel or asyncio.Event()
        self.cancel = asyncio.Event()

        self.state = TaskState.PENDING
        self.req_number = 0
        self.requests = 0
        self.errors = 0
        self._started: Optional[float] = None
        self._report: Optional[TaskReport] = None

    @property
    def stopped(self) -> bool:
        return self.cancel.is_set() or self.run_cancel.is_set()

    @property
    def finished(self) -> bool:
        return self._report is not None

    def statistor(self, state: Optional[TaskState] = None) -> Statistor:
        """Progress snapshot of this task."""
        return Statistor(
            base_url=self.task.base_url,
            offset=self.task.offset,
            req_number=self.req_number,
            word_count=self.generator.word_count,
            dictionaries=self.generator.dictionaries,
            word=self.generator.word,
            total=self.task.total,
            depth=self.task.depth,
            state=state or self.state,
            reason=self.breaker.reason,
        )

    def report(self, state: TaskState) -> TaskReport:
        return TaskReport(
            base_url=self.task.base_url,
            depth=self.task.depth,
            state=state,
            reason=self.breaker.reason,
            offset=self.task.offset,
            req_number=self.req_number,
            requests=self.requests,
            errors=self.errors,
        )

    async def seed_soft_404(self) -> Optional[Baseline]:
        """Request a random path and seed its response into the dedup window."""
        if self.deduplicator is None:
            return None
        try:
            baseline = await self.requester.request(self.task.base_url, random_path())
        except RequestFailed as e:
            logger.debug("Random baseline failed", task=self.task.base_url, reason=e.reason)
            return None
        await self.deduplicator.seed(baseline)
        logger.debug(
            "Random baseline seeded",
            task=self.task.base_url,
            status=baseline.status,
            length=baseline.length,
        )
        return baseline

    async def _attempt(self, index: int) -> None:
        path = self.generator.path(index)
        if path is None:
            self.req_number += 1
            return

        try:
            baseline = await self.requester.request(self.task.base_url, path)
        except RequestFailed as e:
            self.requests += 1
            self.errors += 1
            self.req_number += 1
            logger.debug("Request failed", task=self.task.base_url, url=e.url, reason=e.reason)
            if await self.breaker.record_error():
                self.cancel.set()
            return

        self.requests += 1
        self.req_number += 1
        if await self.breaker.record_success():
            self.cancel.set()
        if self.on_result is not None:
            await self.on_result(self.task, baseline)

    async def _worker(self, indices: Iterator[int]) -> None:
        for index in indices:
            if self.stopped:
                return
            await self._attempt(index)
            if self.checkpointer is not None:
                await self.checkpointer.maybe_snapshot(self.statistor())

    async def run(self) -> TaskReport:
        """
        Run the task until its range is exhausted, its breaker trips or the
        run is stopped.

        Returns:
            Terminal report of the task
        """
        self.state = TaskState.RUNNING
        self._started = time.monotonic()
        log_task_start(
            self.task.base_url,
            self.task.offset,
            self.task.total,
            self.task.depth,
            threads=self.threads,
        )

        if not self.stopped:
            await self.seed_soft_404()

        indices = iter(range(self.task.offset, self.task.total))
        workers = [
            asyncio.create_task(self._worker(indices))
            for _ in range(max(1, min(self.threads, self.task.remaining)))
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            for worker in workers:
                worker.cancel()

        return await self.finish(self.final_state())

    def final_state(self) -> TaskState:
        if self.breaker.tripped:
            return TaskState.TRIPPED
        if self.task.offset + self.req_number < self.task.total:
            return TaskState.CANCELLED
        return TaskState.COMPLETED

    async def finish(self, state: TaskState) -> TaskReport:
        """
        Record the terminal state, write the final snapshot and log it.

        Calling it again returns the first report unchanged.
        """
        if self._report is not None:
            return self._report

        self.state = state
        self._report = self.report(state)
        if self.checkpointer is not None:
            await self.checkpointer.snapshot(self.statistor(state))

        duration = time.monotonic() - self._started if self._started else 0.0
        log_task_complete(
            self.task.base_url,
            state.value,
            self.req_number,
            duration,
            requests=self.requests,
            errors=self.errors,
            reason=self.breaker.reason,
            checkpoint_offset=self._report.checkpoint_offset,
        )
        return self._report
