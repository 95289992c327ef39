"""Output sinks for the normal and fuzzy baseline streams."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional, TextIO

from pathspray.core.config import OutputFormat, RunConfig
from pathspray.core.logger import get_logger, log_baseline
from pathspray.models.baseline import Baseline

logger = get_logger(__name__)

_CLOSE = object()


def format_baseline(baseline: Baseline, output_format: OutputFormat, probes: list[str]) -> str:
    """Render one baseline as a single output line."""
    if output_format == OutputFormat.PROBE:
        return baseline.probe(probes)
    return baseline.model_dump_json()


class OutputSink:
    """
    Bounded multi-producer queue drained by one writer coroutine.

    `put` suspends while the queue is full, which slows the workers feeding
    it. Lines go to `path` when set, otherwise to the structured log.
    """

    def __init__(
        self,
        name: str,
        path: Optional[Path] = None,
        output_format: OutputFormat = OutputFormat.JSON,
        probes: Optional[list[str]] = None,
        maxsize: int = 100,
    ):
        """
        Initialize output sink.

        Args:
            name: Stream name ("normal" or "fuzzy")
            path: Output file, appended to; None logs each baseline instead
            output_format: Line format
            probes: Fields written in probe format
            maxsize: Queue capacity
        """
        self.name = name
        self.path = path
        self.output_format = output_format
        self.probes = probes or ["url", "status", "length", "title"]
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.written = 0
        self.failed = 0
        self._writer: Optional[asyncio.Task] = None
        self._file: Optional[TextIO] = None

    async def start(self) -> None:
        """Open the output file and start the writer."""
        if self._writer is not None:
            return
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "a", encoding="utf-8")
        self._writer = asyncio.create_task(self._write_loop())

    async def put(self, baseline: Baseline) -> None:
        await self.queue.put(baseline)

    def _write(self, baseline: Baseline) -> None:
        if self._file is not None:
            self._file.write(format_baseline(baseline, self.output_format, self.probes) + "\n")
            self._file.flush()
        else:
            log_baseline(
                self.name,
                baseline.url,
                baseline.status,
                length=baseline.length,
                title=baseline.title,
                redirect=baseline.redirect_url or None,
                extracts=baseline.extracts or None,
            )
        self.written += 1

    async def _write_loop(self) -> None:
        while True:
            item = await self.queue.get()
            try:
                if item is _CLOSE:
                    return
                self._write(item)
            except OSError as e:
                # The line is dropped; the queue keeps draining
                self.failed += 1
                logger.error(
                    "Failed to write result",
                    stream=self.name,
                    url=item.url,
                    path=str(self.path),
                    error=str(e),
                )
            finally:
                self.queue.task_done()

    async def close(self) -> None:
        """Flush every queued baseline, stop the writer and close the file."""
        if self._writer is not None:
            await self.queue.put(_CLOSE)
            await self._writer
            self._writer = None
        if self._file is not None:
            self._file.close()
            self._file = None
            logger.info(f"Wrote {self.written} {self.name} results", path=str(self.path))


class OutputSinks:
    """The normal and fuzzy streams of a run."""

    def __init__(self, config: Optional[RunConfig] = None):
        config = config or RunConfig()
        self.normal = OutputSink(
            "normal",
            config.output_file,
            config.output_format,
            config.probes,
            config.queue_size,
        )
        self.fuzzy: Optional[OutputSink] = None
        if config.fuzzy:
            self.fuzzy = OutputSink(
                "fuzzy",
                config.fuzzy_file,
                config.output_format,
                config.probes,
                config.queue_size,
            )

    async def start(self) -> None:
        await self.normal.start()
        if self.fuzzy is not None:
            await self.fuzzy.start()

    async def emit(self, baseline: Baseline) -> None:
        await self.normal.put(baseline)

    async def emit_fuzzy(self, baseline: Baseline) -> None:
        if self.fuzzy is not None:
            await self.fuzzy.put(baseline)

    async def close(self) -> None:
        await self.normal.close()
        if self.fuzzy is not None:
            await self.fuzzy.close()
