"""Run controller: schedules tasks, routes results and spawns recursion."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Optional, Sequence, TextIO

import httpx

from pathspray.core.checkpoint import Checkpointer, JsonStatistorStore, StatistorStore
from pathspray.core.config import ConfigurationError, Settings
from pathspray.core.exporter import OutputSinks
from pathspray.core.logger import get_logger
from pathspray.core.pool import TaskPool
from pathspray.models.baseline import Baseline, VerdictAction
from pathspray.models.task import RunSummary, Task, TaskReport, TaskState
from pathspray.modules.classify.classifier import ResponseClassifier
from pathspray.modules.http.requester import Requester
from pathspray.modules.words.candidates import CandidateGenerator

logger = get_logger(__name__)


def split_targets(lines: Sequence[str]) -> list[str]:
    """Flatten comma separated and line separated URLs, keeping first-seen order."""
    urls = []
    for line in lines:
        urls.extend(part.strip() for part in line.split(",") if part.strip())
    return list(dict.fromkeys(urls))


def load_targets(
    url: Optional[str] = None,
    url_file: Optional[Path] = None,
    stream: Optional[TextIO] = None,
) -> list[str]:
    """
    Collect base URLs from the command line, a list file or a stream.

    Args:
        url: One URL or several separated by commas
        url_file: File with one URL per line
        stream: Fallback source (stdin) when neither is given

    Raises:
        ConfigurationError: If the list file cannot be read or no URL is found
    """
    lines: list[str] = []
    if url:
        lines.append(url)
    if url_file:
        try:
            lines.extend(url_file.read_text(encoding="utf-8").splitlines())
        except OSError as e:
            raise ConfigurationError(f"Cannot read URL list {url_file}: {e}") from e
    if not lines and stream is not None and not stream.isatty():
        lines.extend(stream.read().splitlines())

    urls = split_targets(lines)
    if not urls:
        raise ConfigurationError("No target URL given")
    return urls


class Runner:
    """
    Drives a whole spray run.

    Tasks wait in a FIFO queue; `pool_size` slots each take one task at a
    time and run it in a `TaskPool`. Results flow back through `on_result`,
    which classifies them, feeds the sinks and queues child tasks for
    discovered directories. The run ends when the queue is drained, or at
    the deadline / on cancellation, in which case every unfinished task is
    snapshotted and the summary is marked incomplete.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        store: Optional[StatistorStore] = None,
    ):
        """
        Prepare every collaborator. Nothing is requested yet.

        Args:
            settings: Run settings
            transport: Optional httpx transport (used by tests)
            store: Snapshot store; defaults to the JSON stat file

        Raises:
            ConfigurationError: On unreadable dictionaries, malformed masks,
                rules, expressions or extractors
        """
        self.settings = settings
        self.run_config = settings.run
        self.check_only = settings.run.check_only

        if self.check_only:
            self.generator = CandidateGenerator([""])
        else:
            self.generator = CandidateGenerator.from_config(settings.word)
        self.total = (
            1
            if self.check_only
            else self.generator.total(settings.word.offset, settings.word.limit)
        )

        self.classifier = ResponseClassifier(settings.classifier)
        self.requester = Requester(
            settings.request,
            max_connections=settings.run.pool_size * settings.run.threads,
            transport=transport,
        )
        self.store = store or JsonStatistorStore(settings.run.stat_file)
        self.checkpointer = Checkpointer(self.store, settings.run.checkpoint_period)
        self.sinks = OutputSinks(settings.run)

        self.summary = RunSummary()
        self._queue: asyncio.Queue[Task] = asyncio.Queue()
        self._active: dict[str, TaskPool] = {}
        self._spawned: set[str] = set()
        self._stop = asyncio.Event()

    def build_tasks(self, urls: Sequence[str]) -> list[Task]:
        """Root tasks for the given base URLs, starting at the configured offset."""
        offset = 0 if self.check_only else self.settings.word.offset
        return [
            Task(base_url=url, offset=min(offset, self.total), total=self.total, depth=0)
            for url in split_targets(urls)
        ]

    async def resume_tasks(self, store: Optional[StatistorStore] = None) -> list[Task]:
        """Tasks rebuilt from the latest snapshot of every base URL in `store`."""
        checkpointer = Checkpointer(store or self.store, self.run_config.checkpoint_period)
        tasks = await checkpointer.resume_tasks()
        return [task for task in tasks if task.remaining > 0]

    def enqueue(self, task: Task) -> bool:
        """Queue a task unless its base URL was already scheduled in this run."""
        if task.base_url in self._spawned:
            return False
        self._spawned.add(task.base_url)
        self._queue.put_nowait(task)
        return True

    def child_url(self, baseline: Baseline) -> str:
        """Base URL of the task spawned for a directory baseline."""
        if baseline.redirect_url and baseline.redirect_url.endswith("/"):
            return baseline.redirect_url
        return baseline.url.rstrip("/") + "/"

    async def on_result(self, task: Task, baseline: Baseline) -> None:
        """Classify one completed request and route it."""
        verdict = await self.classifier.evaluate(baseline, task.depth)

        if verdict.action == VerdictAction.EMIT:
            self.summary.emitted += 1
            await self.sinks.emit(baseline)
        elif verdict.action == VerdictAction.FUZZY:
            self.summary.fuzzy += 1
            await self.sinks.emit_fuzzy(baseline)
        else:
            self.summary.discarded += 1
        if verdict.reason == "duplicate":
            self.summary.duplicates += 1

        # Queued even while stopping; shutdown snapshots them as pending
        if verdict.recurse and not self.check_only:
            child = task.child(self.child_url(baseline), self.total)
            if self.enqueue(child):
                self.summary.recursed += 1
                logger.info(
                    "Recursing into directory",
                    task=child.base_url,
                    parent=task.base_url,
                    depth=child.depth,
                )

    def _pool(self, task: Task) -> TaskPool:
        seed = self.settings.request.random_baseline and not self.check_only
        return TaskPool(
            task,
            self.generator,
            self.requester,
            breaker_config=self.settings.breaker,
            checkpointer=self.checkpointer,
            on_result=self.on_result,
            threads=self.run_config.threads,
            deduplicator=self.classifier.deduplicator if seed else None,
            run_cancel=self._stop,
        )

    def _defer(self, task: Task) -> Awaitable[None]:
        self.summary.incomplete = True
        return self.checkpointer.snapshot(self._pool(task).statistor(TaskState.PENDING))

    def _record(self, report: TaskReport) -> None:
        self.summary.add_task(report)
        if report.state == TaskState.CANCELLED:
            self.summary.incomplete = True

    async def _run_task(self, task: Task) -> None:
        if self._stop.is_set():
            await self._defer(task)
            return
        pool = self._pool(task)
        self._active[task.base_url] = pool
        report = await pool.run()
        del self._active[task.base_url]
        self._record(report)

    async def _slot(self) -> None:
        while True:
            task = await self._queue.get()
            try:
                await self._run_task(task)
            finally:
                self._queue.task_done()

    async def _wait_for_stop(self, cancel: asyncio.Event) -> str:
        try:
            await asyncio.wait_for(cancel.wait(), timeout=self.run_config.deadline)
            return "cancelled"
        except asyncio.TimeoutError:
            return "deadline"

    async def _shutdown(self, slots: list[asyncio.Task], drained: asyncio.Task, reason: str) -> None:
        logger.warning(
            "Stopping run",
            reason=reason,
            active=len(self._active),
            queued=self._queue.qsize(),
        )
        self._stop.set()
        self.summary.incomplete = True

        # Workers stop after their in-flight request; give them drain_timeout
        if self.run_config.drain_timeout > 0:
            await asyncio.wait({drained}, timeout=self.run_config.drain_timeout)
        for slot in slots:
            slot.cancel()
        await asyncio.gather(*slots, return_exceptions=True)

        for pool in list(self._active.values()):
            self._record(await pool.finish(TaskState.CANCELLED))
        self._active.clear()

        while not self._queue.empty():
            await self._defer(self._queue.get_nowait())
            self._queue.task_done()

    async def run(self, tasks: Sequence[Task], cancel: Optional[asyncio.Event] = None) -> RunSummary:
        """
        Run every task (and every task spawned from them) to termination.

        Args:
            tasks: Root or resumed tasks
            cancel: Optional external stop signal

        Returns:
            Run summary; `incomplete` is set when the deadline or the cancel
            signal cut the run short
        """
        cancel = cancel or asyncio.Event()
        self.summary = RunSummary()
        for task in tasks:
            self.enqueue(task)

        logger.info(
            "Starting run",
            tasks=self._queue.qsize(),
            total=self.total,
            pool_size=self.run_config.pool_size,
            threads=self.run_config.threads,
            check_only=self.check_only,
        )

        await self.sinks.start()
        await self.requester.start()
        slots = [asyncio.create_task(self._slot()) for _ in range(self.run_config.pool_size)]
        drained = asyncio.create_task(self._queue.join())
        stopper = asyncio.create_task(self._wait_for_stop(cancel))
        try:
            done, _ = await asyncio.wait(
                {drained, stopper, *slots},
                return_when=asyncio.FIRST_COMPLETED,
            )
            # A slot only returns by raising
            for slot in slots:
                if slot in done:
                    slot.result()
            if stopper in done:
                await self._shutdown(slots, drained, stopper.result())
        finally:
            for pending in (drained, stopper, *slots):
                pending.cancel()
            await asyncio.gather(drained, stopper, *slots, return_exceptions=True)
            await self.requester.close()
            await self.sinks.close()

        self.summary.finish()
        logger.info(
            f"Run finished: {self.summary.outcome}",
            requests=self.summary.requests,
            errors=self.summary.errors,
            emitted=self.summary.emitted,
            fuzzy=self.summary.fuzzy,
            recursed=self.summary.recursed,
            duration_seconds=round(self.summary.duration_seconds, 2),
        )
        return self.summary


async def run_spray(
    settings: Settings,
    urls: Sequence[str] = (),
    resume_store: Optional[StatistorStore] = None,
    store: Optional[StatistorStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    cancel: Optional[asyncio.Event] = None,
) -> RunSummary:
    """
    Build a runner and run it over `urls` or over resumed snapshots.

    Raises:
        ConfigurationError: Before any request when the run cannot be prepared
    """
    runner = Runner(settings, transport=transport, store=store)
    if resume_store is not None:
        tasks = await runner.resume_tasks(resume_store)
    else:
        tasks = runner.build_tasks(urls)
    if not tasks:
        raise ConfigurationError("Nothing to run")
    return await runner.run(tasks, cancel)
