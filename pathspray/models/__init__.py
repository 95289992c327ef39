"""Data models for pathspray."""

from pathspray.models.baseline import Baseline, Verdict, VerdictAction
from pathspray.models.task import RunSummary, Statistor, Task, TaskReport, TaskState

__all__ = [
    "Baseline",
    "Verdict",
    "VerdictAction",
    "RunSummary",
    "Statistor",
    "Task",
    "TaskReport",
    "TaskState",
]
