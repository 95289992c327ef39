"""Task, checkpoint and run summary models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TaskState(str, Enum):
    """Task lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    TRIPPED = "tripped"
    CANCELLED = "cancelled"


class Task(BaseModel):
    """
    One scan unit bound to a base URL.

    `offset` is the resume cursor into the candidate sequence and `total`
    the exclusive end of the range this task covers.
    """

    model_config = ConfigDict(frozen=True)

    base_url: str
    offset: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    depth: int = Field(default=0, ge=0)

    @property
    def remaining(self) -> int:
        """Candidates not yet attempted."""
        return max(0, self.total - self.offset)

    def child(self, base_url: str, total: int) -> "Task":
        """Create the task for a directory discovered under this one."""
        return Task(base_url=base_url, offset=0, total=total, depth=self.depth + 1)


class Statistor(BaseModel):
    """
    Per-task progress snapshot written at checkpoint cadence and at shutdown.

    `req_number` counts candidates completed since `offset`.
    """

    base_url: str
    offset: int = 0
    req_number: int = 0
    word_count: int = 0
    dictionaries: list[str] = Field(default_factory=list)
    word: str = ""
    total: int = 0
    depth: int = 0
    state: TaskState = TaskState.RUNNING
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def resume_offset(self) -> int:
        """Offset a resumed task starts from."""
        return self.offset + self.req_number

    def to_task(self, total: Optional[int] = None) -> Task:
        """
        Rebuild the task this snapshot was taken from.

        Args:
            total: Candidate count of the current configuration; falls back
                to the total recorded in the snapshot

        Returns:
            Task starting at the resume offset
        """
        total = self.total if total is None else total
        return Task(
            base_url=self.base_url,
            offset=min(self.resume_offset, total),
            total=total,
            depth=self.depth,
        )


class TaskReport(BaseModel):
    """Terminal record of a task, kept for the run summary."""
    base_url: str
    depth: int = 0
    state: TaskState = TaskState.COMPLETED
    reason: Optional[str] = None
    offset: int = 0
    req_number: int = 0
    requests: int = 0
    errors: int = 0

    @property
    def checkpoint_offset(self) -> int:
        """Offset to resume this task from."""
        return self.offset + self.req_number


class RunSummary(BaseModel):
    """Aggregate counters for a finished (or interrupted) run."""

    requests: int = 0
    errors: int = 0
    emitted: int = 0
    fuzzy: int = 0
    discarded: int = 0
    duplicates: int = 0
    recursed: int = 0
    incomplete: bool = False
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    tasks: list[TaskReport] = Field(default_factory=list)

    @property
    def tasks_completed(self) -> int:
        return sum(1 for t in self.tasks if t.state == TaskState.COMPLETED)

    @property
    def tasks_tripped(self) -> int:
        return sum(1 for t in self.tasks if t.state == TaskState.TRIPPED)

    @property
    def tasks_cancelled(self) -> int:
        return sum(1 for t in self.tasks if t.state == TaskState.CANCELLED)

    @property
    def duration_seconds(self) -> float:
        end = self.completed_at or datetime.now()
        return (end - self.started_at).total_seconds()

    @property
    def outcome(self) -> str:
        """
        success: every task ran to completion.
        partial: some tasks tripped or the deadline cut the run short.
        failure: every task was aborted by its circuit breaker.
        """
        if self.tasks and self.tasks_tripped == len(self.tasks):
            return "failure"
        if self.incomplete or self.tasks_tripped or self.tasks_cancelled:
            return "partial"
        return "success"

    def add_task(self, report: TaskReport) -> None:
        """Record a terminated task."""
        self.tasks.append(report)
        self.requests += report.requests
        self.errors += report.errors

    def finish(self) -> None:
        self.completed_at = datetime.now()
