from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from types import MappingProxyType

from asgiref.sync import async_to_sync, sync_to_async

from .definitions import TaskDefinition, validate_definition
from .errors import TaskSchedulerError
from .executor import TaskExecutor
from .locks import AdvisoryLockManager, lock_id_for
from .retry import annotate_failure, pending_retry
from .schedule import is_due
from .span import TaskSpan
from .store import CreateTaskRunData, TaskRun, TaskRunStatus, TaskRunStore, UpdateTaskRunData

logger = logging.getLogger(__name__)

COMPLETED = "completed"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass
class SchedulerRunSummary:
    evaluated: list[str] = field(default_factory=list)
    started: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def record(self, task_name: str, outcome: str) -> None:
        if outcome == SKIPPED:
            self.skipped.append(task_name)
            return
        self.started.append(task_name)
        if outcome == COMPLETED:
            self.completed.append(task_name)
        else:
            self.failed.append(task_name)


class TaskScheduler:
    """
    Evaluates every registered task once per call to ``run``/``arun``.

    A task runs when it is enabled, not already running, and either due per its
    cron schedule or owed a retry after a ``retry-on-fail`` failure. Each
    execution holds the task's advisory lock from before the run record is
    created until after it is finalized. Failures never escape the pass: one
    task's error does not stop the others from being evaluated.
    """

    def __init__(
        self,
        tasks: Mapping[str, TaskDefinition],
        store: TaskRunStore,
        *,
        executor: TaskExecutor | None = None,
        stale_run_grace: float = 60.0,
    ):
        for name, definition in tasks.items():
            validate_definition(name, definition)
        self.tasks = MappingProxyType(dict(tasks))
        self.store = store
        self.locks = AdvisoryLockManager(store)
        self.executor = executor or TaskExecutor()
        self.stale_run_grace = stale_run_grace

    def run(self) -> SchedulerRunSummary:
        """Synchronous entry point. Use ``arun`` from inside an event loop."""
        return async_to_sync(self.arun)()

    async def arun(self) -> SchedulerRunSummary:
        summary = SchedulerRunSummary()
        logger.info("scheduled_tasks_run_start tasks=%s", len(self.tasks))
        for name, definition in self.tasks.items():
            summary.evaluated.append(name)
            try:
                outcome = await self._process(name, definition)
            except Exception:
                logger.exception("scheduled_task_unexpected_error task=%s", name)
                outcome = SKIPPED
            summary.record(name, outcome)
        logger.info(
            "scheduled_tasks_run_finished evaluated=%s started=%s completed=%s failed=%s",
            len(summary.evaluated),
            len(summary.started),
            len(summary.completed),
            len(summary.failed),
        )
        return summary

    async def _process(self, name: str, definition: TaskDefinition) -> str:
        if not definition.schedule.enabled:
            logger.debug("scheduled_task_skip task=%s reason=disabled", name)
            return SKIPPED

        try:
            eligible, _ = await self._check_eligibility(name, definition, locked=False)
        except Exception:
            logger.exception("scheduled_task_eligibility_failed task=%s", name)
            return SKIPPED
        if not eligible:
            return SKIPPED

        lock_id = lock_id_for(name)
        try:
            async with self.locks.hold(lock_id) as acquired:
                if not acquired:
                    logger.info("scheduled_task_skip task=%s reason=locked lock_id=%s", name, lock_id)
                    return SKIPPED
                # Another invocation may have run the task since the pre-check.
                eligible, retry_of_run_id = await self._check_eligibility(name, definition, locked=True)
                if not eligible:
                    return SKIPPED
                return await self._execute(name, definition, lock_id, retry_of_run_id)
        except TaskSchedulerError as exc:
            logger.error("scheduled_task_skip task=%s reason=lock_error error=%s", name, exc)
            return SKIPPED

    async def _check_eligibility(
        self, name: str, definition: TaskDefinition, *, locked: bool
    ) -> tuple[bool, str | None]:
        now = self.store.now()
        running = await _call(self.store.find_running_run, name)
        if running is not None:
            if not self._is_stale(running, definition, now):
                logger.debug("scheduled_task_skip task=%s reason=running run_id=%s", name, running.id)
                return False, None
            if not locked:
                return True, None
            await self._abandon(name, definition, running, now)

        runs = await _call(self.store.find_runs_for_task, name, limit=1)
        retry = pending_retry(definition.retry_policy, runs)
        if retry is not None:
            logger.debug("scheduled_task_retry_pending task=%s failed_run_id=%s", name, retry.id)
            return True, retry.id
        if is_due(definition.schedule, now, runs):
            return True, None
        logger.debug("scheduled_task_skip task=%s reason=not_due", name)
        return False, None

    def _is_stale(self, run: TaskRun, definition: TaskDefinition, now: datetime) -> bool:
        return now - run.started_at > timedelta(seconds=definition.timeout + self.stale_run_grace)

    async def _abandon(self, name: str, definition: TaskDefinition, run: TaskRun, now: datetime) -> None:
        annotation = annotate_failure(
            definition.retry_policy,
            f"Run abandoned: no completion recorded within {definition.timeout:g} seconds",
            abandoned=True,
        )
        completed_at = max(now, run.started_at)
        await _call(
            self.store.update_task_run,
            run.id,
            UpdateTaskRunData(
                status=TaskRunStatus.FAILED,
                completed_at=completed_at,
                duration_ms=int((completed_at - run.started_at).total_seconds() * 1000),
                error_message=annotation.error_message,
                error_code=annotation.error_code.value,
            ),
        )
        logger.warning(
            "scheduled_task_abandoned_run task=%s run_id=%s started_at=%s",
            name,
            run.id,
            run.started_at.isoformat(),
        )

    async def _execute(
        self, name: str, definition: TaskDefinition, lock_id: int, retry_of_run_id: str | None
    ) -> str:
        try:
            run = await _call(
                self.store.create_task_run,
                CreateTaskRunData(
                    task_name=name,
                    started_at=self.store.now(),
                    advisory_lock_id=lock_id,
                    retry_of_run_id=retry_of_run_id,
                ),
            )
        except Exception:
            logger.exception("scheduled_task_create_run_failed task=%s", name)
            return SKIPPED

        logger.info(
            "scheduled_task_started task=%s run_id=%s retry_of=%s", name, run.id, retry_of_run_id
        )
        span = TaskSpan(task_name=name, timeout=definition.timeout, run_id=run.id)
        started = time.monotonic()
        outcome = await self.executor.execute(name, definition, span)
        duration_ms = int((time.monotonic() - started) * 1000)
        completed_at = max(self.store.now(), run.started_at)

        if outcome.ok:
            result = COMPLETED
            patch = UpdateTaskRunData(
                status=TaskRunStatus.COMPLETED,
                completed_at=completed_at,
                duration_ms=duration_ms,
                result_message=outcome.result_message,
                logs=span.audit_trail(),
            )
            logger.info("scheduled_task_completed task=%s run_id=%s duration_ms=%s", name, run.id, duration_ms)
        else:
            result = FAILED
            annotation = annotate_failure(
                definition.retry_policy, outcome.error_message, timed_out=outcome.timed_out
            )
            patch = UpdateTaskRunData(
                status=TaskRunStatus.FAILED,
                completed_at=completed_at,
                duration_ms=duration_ms,
                error_message=annotation.error_message,
                error_code=annotation.error_code.value,
                logs=span.audit_trail(),
            )
            logger.warning(
                "scheduled_task_failed task=%s run_id=%s policy=%s error=%s",
                name,
                run.id,
                definition.retry_policy.value,
                outcome.error_message,
            )

        try:
            await _call(self.store.update_task_run, run.id, patch)
        except Exception:
            logger.exception("scheduled_task_finalize_failed task=%s run_id=%s", name, run.id)
        return result


async def _call(func, *args, **kwargs):
    return await sync_to_async(func, thread_sensitive=True)(*args, **kwargs)
