"""Checkpointing of task progress and resume from prior snapshots."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional, Protocol, Sequence

from pydantic import ValidationError

from pathspray.core.config import ConfigurationError
from pathspray.core.database import Database
from pathspray.core.logger import get_logger
from pathspray.models.task import Statistor, Task

logger = get_logger(__name__)

SQLITE_SUFFIXES = {".db", ".sqlite", ".sqlite3"}


class StatistorStore(Protocol):
    """Persistence collaborator for snapshots."""

    async def save(self, statistor: Statistor) -> None: ...

    async def load(self) -> list[Statistor]: ...


class JsonStatistorStore:
    """Newline-delimited JSON file, one snapshot per line, appended."""

    def __init__(self, path: Path):
        self.path = Path(path)

    async def save(self, statistor: Statistor) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(statistor.model_dump_json() + "\n")

    async def load(self) -> list[Statistor]:
        """
        Read every snapshot in file order.

        Raises:
            ConfigurationError: If the file is missing or a line is malformed
        """
        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot read checkpoint file {self.path}: {e}") from e

        statistors = []
        for lineno, line in enumerate(content.splitlines(), 1):
            if not line.strip():
                continue
            try:
                statistors.append(Statistor.model_validate_json(line))
            except ValidationError as e:
                raise ConfigurationError(
                    f"Malformed checkpoint at {self.path}:{lineno}: {e.errors()[0]['msg']}"
                ) from e
        return statistors


class SqliteStatistorStore:
    """Snapshots kept in the `statistors` table of a SQLite database."""

    def __init__(self, db: Database):
        self.db = db

    async def save(self, statistor: Statistor) -> None:
        await self.db.add_statistor(statistor.model_dump(mode="json"))

    async def load(self) -> list[Statistor]:
        return [Statistor.model_validate(row) for row in await self.db.get_statistors()]


def latest_by_url(statistors: Sequence[Statistor]) -> dict[str, Statistor]:
    """
    Keep the most recent snapshot per base URL.

    Snapshots are ordered by timestamp; ties keep store order, so the later
    record wins.
    """
    latest: dict[str, Statistor] = {}
    for stat in sorted(enumerate(statistors), key=lambda item: (item[1].timestamp, item[0])):
        latest[stat[1].base_url] = stat[1]
    return latest


class Checkpointer:
    """
    Emits progress snapshots for running tasks.

    Snapshots are taken every `period` completed candidates of a task and
    always when a task terminates.
    """

    def __init__(self, store: StatistorStore, period: int = 1000):
        """
        Initialize checkpointer.

        Args:
            store: Persistence collaborator
            period: Completed candidates between two snapshots of a task
        """
        self.store = store
        self.period = period
        self._last: dict[str, int] = {}
        self.snapshots = 0

    async def snapshot(self, statistor: Statistor) -> None:
        """Persist a snapshot unconditionally."""
        await self.store.save(statistor)
        self._last[statistor.base_url] = statistor.req_number
        self.snapshots += 1
        logger.debug(
            "Checkpoint written",
            task=statistor.base_url,
            offset=statistor.offset,
            req_number=statistor.req_number,
            state=statistor.state.value,
        )

    async def maybe_snapshot(self, statistor: Statistor) -> bool:
        """
        Persist a snapshot if the task crossed a cadence boundary.

        Returns:
            True if a snapshot was written
        """
        last = self._last.get(statistor.base_url, 0)
        if statistor.req_number - last < self.period:
            return False
        await self.snapshot(statistor)
        return True

    async def resume_tasks(self, total: Optional[int] = None) -> list[Task]:
        """
        Rebuild tasks from stored snapshots.

        Args:
            total: Candidate count of the current configuration

        Returns:
            One task per base URL, starting at `offset + req_number`
        """
        statistors = await self.store.load()
        latest = latest_by_url(statistors)
        tasks = [stat.to_task(total) for stat in latest.values()]
        logger.info(
            f"Loaded {len(tasks)} tasks from checkpoint",
            snapshots=len(statistors),
            tasks=len(tasks),
        )
        return tasks


@asynccontextmanager
async def open_store(path: Path) -> AsyncIterator[StatistorStore]:
    """
    Open the store matching a checkpoint path.

    `.db`, `.sqlite` and `.sqlite3` files use SQLite, anything else the
    newline-delimited JSON format.
    """
    path = Path(path)
    if path.suffix not in SQLITE_SUFFIXES:
        yield JsonStatistorStore(path)
        return

    db = Database(path)
    await db.connect()
    try:
        yield SqliteStatistorStore(db)
    finally:
        await db.close()
