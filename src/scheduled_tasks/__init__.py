from .definitions import RetryPolicy, TaskDefinition, TaskRegistry, TaskSchedule
from .errors import ErrorCode, TaskSchedulerError
from .executor import ExecutionOutcome, TaskExecutor
from .locks import AdvisoryLockManager, lock_id_for
from .memory import InMemoryTaskRunStore
from .scheduler import SchedulerRunSummary, TaskScheduler
from .span import TaskSpan
from .store import CreateTaskRunData, TaskRun, TaskRunStatus, TaskRunStore, UpdateTaskRunData

__all__ = [
    "AdvisoryLockManager",
    "CreateTaskRunData",
    "ErrorCode",
    "ExecutionOutcome",
    "InMemoryTaskRunStore",
    "RetryPolicy",
    "SchedulerRunSummary",
    "TaskDefinition",
    "TaskExecutor",
    "TaskRegistry",
    "TaskRun",
    "TaskRunStatus",
    "TaskRunStore",
    "TaskSchedule",
    "TaskScheduler",
    "TaskSchedulerError",
    "TaskSpan",
    "UpdateTaskRunData",
    "lock_id_for",
]
