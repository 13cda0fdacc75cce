from __future__ import annotations

import asyncio
import contextvars
import functools
import inspect
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from .definitions import TaskDefinition
from .errors import TaskSchedulerError
from .span import TaskSpan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionOutcome:
    ok: bool
    result_message: str | None = None
    error_message: str | None = None
    timed_out: bool = False
    exception: BaseException | None = None


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def _as_message(result: Any) -> str:
    if result is None:
        return ""
    return result if isinstance(result, str) else str(result)


async def _await(awaitable):
    return await awaitable


def _call_sync(handler, span: TaskSpan):
    result = handler(span)
    if inspect.isawaitable(result):
        result = asyncio.run(_await(result))
    return result


def _log_late_settle(task_name: str, future: asyncio.Future) -> None:
    if future.cancelled():
        logger.info("scheduled_task_abandoned task=%s", task_name)
        return
    exc = future.exception()
    logger.info(
        "scheduled_task_settled_after_timeout task=%s ok=%s error=%s",
        task_name,
        exc is None,
        exc,
    )


class TaskExecutor:
    """
    Runs a single task handler and classifies how it settled.

    Coroutine handlers run as asyncio tasks on the current loop; plain callables
    each get their own worker thread, unless a ``pool`` is supplied. The timeout
    only bounds how long the executor waits: a handler still running at the
    deadline is reported as timed out and left to finish on its own. A handler
    queued on a busy ``pool`` that has not started by the deadline never starts.
    """

    def __init__(self, pool: ThreadPoolExecutor | None = None):
        self.pool = pool

    async def execute(self, task_name: str, definition: TaskDefinition, span: TaskSpan) -> ExecutionOutcome:
        loop = asyncio.get_running_loop()
        pending, job = self._start(loop, task_name, definition.handler, span)

        done, _ = await asyncio.wait({pending}, timeout=definition.timeout)
        if not done:
            if job is not None and job.cancel():
                logger.warning("scheduled_task_not_started task=%s", task_name)
            else:
                pending.add_done_callback(functools.partial(_log_late_settle, task_name))
            error = TaskSchedulerError.task_timeout(task_name, definition.timeout)
            logger.warning(
                "scheduled_task_timeout task=%s timeout_s=%s", task_name, definition.timeout
            )
            return ExecutionOutcome(
                ok=False, error_message=str(error), timed_out=True, exception=error
            )

        try:
            result = pending.result()
        except asyncio.CancelledError as exc:
            return ExecutionOutcome(
                ok=False, error_message=f"Task {task_name} was cancelled", exception=exc
            )
        except Exception as exc:
            return ExecutionOutcome(ok=False, error_message=_error_message(exc), exception=exc)
        return ExecutionOutcome(ok=True, result_message=_as_message(result))

    def _start(
        self, loop: asyncio.AbstractEventLoop, task_name: str, handler, span: TaskSpan
    ) -> tuple[asyncio.Future, Future | None]:
        if inspect.iscoroutinefunction(handler):
            return asyncio.ensure_future(handler(span)), None
        context = contextvars.copy_context()
        pool = self.pool or ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"scheduled-task-{task_name}")
        job = pool.submit(context.run, _call_sync, handler, span)
        if self.pool is None:
            # The worker thread keeps running the submitted job.
            pool.shutdown(wait=False)
        return asyncio.wrap_future(job, loop=loop), job
