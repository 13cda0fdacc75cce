from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .definitions import RetryPolicy
from .errors import ErrorCode
from .store import TaskRun, TaskRunStatus

RETRY_SUFFIX = " - will retry in next run"


@dataclass(frozen=True)
class FailureAnnotation:
    error_message: str
    error_code: ErrorCode


def annotate_failure(
    policy: RetryPolicy,
    error_message: str,
    *,
    timed_out: bool = False,
    abandoned: bool = False,
) -> FailureAnnotation:
    if policy == RetryPolicy.RETRY_ON_FAIL:
        return FailureAnnotation(f"{error_message}{RETRY_SUFFIX}", ErrorCode.RETRY_SCHEDULED)
    if abandoned:
        code = ErrorCode.RUN_ABANDONED
    elif timed_out:
        code = ErrorCode.TASK_TIMEOUT
    else:
        code = ErrorCode.TASK_FAILED
    return FailureAnnotation(error_message, code)


def pending_retry(policy: RetryPolicy, runs: Sequence[TaskRun]) -> TaskRun | None:
    """
    Return the failed run a ``retry-on-fail`` task still owes a retry for.

    Only the latest run matters: once any later attempt exists the earlier
    failure has been dealt with. There is no cap on consecutive retries.
    """
    if policy != RetryPolicy.RETRY_ON_FAIL or not runs:
        return None
    latest = runs[0]
    if latest.status == TaskRunStatus.FAILED and latest.error_code == ErrorCode.RETRY_SCHEDULED:
        return latest
    return None
