from __future__ import annotations

import itertools
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from .store import CreateTaskRunData, TaskRun, TaskRunStatus, UpdateTaskRunData

DEFAULT_TIME = datetime(2000, 1, 1, tzinfo=timezone.utc)


class InMemoryTaskRunStore:
    """
    Process-local ``TaskRunStore``.

    Locks only exclude schedulers sharing this object, so it suits tests and
    single-process embedding. The clock follows wall time until ``set_time`` or
    ``advance`` freezes it.
    """

    def __init__(self, now: datetime | None = None):
        self._mutex = threading.RLock()
        self._runs: dict[str, TaskRun] = {}
        self._sequence: dict[str, int] = {}
        self._counter = itertools.count(1)
        self._locks: set[int] = set()
        self._frozen_at = now

    # Clock

    def now(self) -> datetime:
        if self._frozen_at is not None:
            return self._frozen_at
        return datetime.now(timezone.utc)

    def set_time(self, when: datetime) -> None:
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        self._frozen_at = when

    def advance(self, delta: timedelta) -> None:
        self._frozen_at = self.now() + delta

    # Runs

    def create_task_run(self, data: CreateTaskRunData) -> TaskRun:
        run = TaskRun(
            id=uuid.uuid4().hex,
            task_name=data.task_name,
            status=TaskRunStatus(data.status),
            started_at=data.started_at,
            advisory_lock_id=data.advisory_lock_id,
            retry_of_run_id=data.retry_of_run_id,
        )
        with self._mutex:
            self._runs[run.id] = run
            self._sequence[run.id] = next(self._counter)
        return run

    def update_task_run(self, run_id: str, patch: UpdateTaskRunData) -> TaskRun:
        changes = patch.changes()
        if "logs" in changes:
            changes["logs"] = tuple(changes["logs"])
        with self._mutex:
            try:
                run = self._runs[run_id]
            except KeyError:
                raise KeyError(f"Task run {run_id} not found") from None
            if "status" in changes and run.is_finished:
                raise ValueError(f"Task run {run_id} is already {run.status.value}")
            updated = replace(run, **changes)
            self._runs[run_id] = updated
        return updated

    def find_running_run(self, task_name: str) -> TaskRun | None:
        for run in self.find_runs_for_task(task_name):
            if run.status == TaskRunStatus.RUNNING:
                return run
        return None

    def find_runs_for_task(
        self, task_name: str, since: datetime | None = None, limit: int | None = None
    ) -> list[TaskRun]:
        with self._mutex:
            runs = [
                run
                for run in self._runs.values()
                if run.task_name == task_name and (since is None or run.started_at >= since)
            ]
            runs.sort(key=lambda run: (run.started_at, self._sequence[run.id]), reverse=True)
        return runs if limit is None else runs[:limit]

    # Locks

    def try_acquire_lock(self, lock_id: int) -> bool:
        with self._mutex:
            if lock_id in self._locks:
                return False
            self._locks.add(lock_id)
            return True

    def release_lock(self, lock_id: int) -> None:
        with self._mutex:
            self._locks.discard(lock_id)

    def is_lock_held(self, lock_id: int) -> bool:
        with self._mutex:
            return lock_id in self._locks

    # Inspection helpers

    def all_runs(self) -> list[TaskRun]:
        with self._mutex:
            return sorted(self._runs.values(), key=lambda run: self._sequence[run.id])

    def runs_for_task(self, task_name: str) -> list[TaskRun]:
        return [run for run in self.all_runs() if run.task_name == task_name]

    def most_recent_run(self, task_name: str) -> TaskRun | None:
        runs = self.find_runs_for_task(task_name)
        return runs[0] if runs else None

    def count_by_status(self, status: TaskRunStatus | str) -> int:
        status = TaskRunStatus(status)
        return sum(1 for run in self.all_runs() if run.status == status)

    def set_task_as_running(
        self,
        task_name: str,
        lock_id: int | None = 12345,
        *,
        hold_lock: bool = True,
        started_at: datetime | None = None,
    ) -> TaskRun:
        run = self.create_task_run(
            CreateTaskRunData(
                task_name=task_name,
                started_at=started_at or self.now(),
                advisory_lock_id=lock_id,
            )
        )
        if hold_lock and lock_id is not None:
            self.try_acquire_lock(lock_id)
        return run

    def reset(self) -> None:
        with self._mutex:
            self._runs.clear()
            self._sequence.clear()
            self._locks.clear()
