from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    TASK_FAILED = "TASK_FAILED"
    TASK_TIMEOUT = "TASK_TIMEOUT"
    RETRY_SCHEDULED = "RETRY_SCHEDULED"
    RUN_ABANDONED = "RUN_ABANDONED"
    DATABASE_ERROR = "DATABASE_ERROR"
    INVALID_TASK_DEFINITION = "INVALID_TASK_DEFINITION"
    INVALID_SCHEDULE = "INVALID_SCHEDULE"


class TaskSchedulerError(Exception):
    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code

    def is_retryable(self) -> bool:
        return self.code == ErrorCode.RETRY_SCHEDULED

    @classmethod
    def invalid_schedule(cls, task_name: str, cron: str, reason: str) -> TaskSchedulerError:
        return cls(
            ErrorCode.INVALID_SCHEDULE,
            f'Invalid cron expression for task "{task_name}": {cron}. {reason}',
        )

    @classmethod
    def invalid_definition(cls, task_name: str, reason: str) -> TaskSchedulerError:
        return cls(
            ErrorCode.INVALID_TASK_DEFINITION,
            f'Invalid definition for task "{task_name}": {reason}',
        )

    @classmethod
    def task_timeout(cls, task_name: str, timeout: float) -> TaskSchedulerError:
        return cls(
            ErrorCode.TASK_TIMEOUT,
            f"Task {task_name} timed out after {timeout:g} seconds",
        )

    @classmethod
    def database_error(cls, operation: str, exc: BaseException) -> TaskSchedulerError:
        return cls(ErrorCode.DATABASE_ERROR, f"Database error during {operation}: {exc}")
