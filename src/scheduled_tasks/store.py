from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class TaskRunStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class TaskRun:
    id: str
    task_name: str
    status: TaskRunStatus
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    advisory_lock_id: int | None = None
    result_message: str | None = None
    error_message: str | None = None
    error_code: str | None = None
    retry_of_run_id: str | None = None
    logs: tuple[dict[str, Any], ...] = ()

    @property
    def is_finished(self) -> bool:
        return self.status in (TaskRunStatus.COMPLETED, TaskRunStatus.FAILED)


@dataclass(frozen=True)
class CreateTaskRunData:
    task_name: str
    started_at: datetime
    advisory_lock_id: int | None = None
    retry_of_run_id: str | None = None
    status: TaskRunStatus = TaskRunStatus.RUNNING


@dataclass(frozen=True)
class UpdateTaskRunData:
    status: TaskRunStatus | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    result_message: str | None = None
    error_message: str | None = None
    error_code: str | None = None
    logs: tuple[dict[str, Any], ...] | None = None

    def changes(self) -> dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@runtime_checkable
class TaskRunStore(Protocol):
    """
    Persistence used by the scheduler for run records and advisory locks.

    Methods are synchronous; the scheduler calls them through ``sync_to_async``.
    ``find_runs_for_task`` returns runs newest first, ties on ``started_at``
    broken by creation order.
    """

    def now(self) -> datetime:
        ...

    def create_task_run(self, data: CreateTaskRunData) -> TaskRun:
        ...

    def update_task_run(self, run_id: str, patch: UpdateTaskRunData) -> TaskRun:
        ...

    def find_running_run(self, task_name: str) -> TaskRun | None:
        ...

    def find_runs_for_task(
        self, task_name: str, since: datetime | None = None, limit: int | None = None
    ) -> list[TaskRun]:
        ...

    def try_acquire_lock(self, lock_id: int) -> bool:
        ...

    def release_lock(self, lock_id: int) -> None:
        ...

    def is_lock_held(self, lock_id: int) -> bool:
        ...
