from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from .errors import TaskSchedulerError
from .schedule import validate_schedule

if TYPE_CHECKING:
    from .span import TaskSpan

TaskHandler = Callable[["TaskSpan"], Union[str, Awaitable[str]]]


class RetryPolicy(str, Enum):
    RETRY_ON_FAIL = "retry-on-fail"
    IGNORE = "ignore"


_POLICY_VALUES = frozenset(policy.value for policy in RetryPolicy)


@dataclass(frozen=True)
class TaskSchedule:
    cron: str
    timezone: str = "UTC"
    enabled: bool = True


@dataclass(frozen=True)
class TaskDefinition:
    """
    A task registered with the scheduler under a unique name.

    ``timeout`` is in seconds. ``handler`` receives a ``TaskSpan`` and returns a
    short message describing what it did; it may be a coroutine function.
    """
    schedule: TaskSchedule
    timeout: float
    retry_policy: RetryPolicy
    handler: TaskHandler

    def __post_init__(self):
        if isinstance(self.schedule, Mapping):
            object.__setattr__(self, "schedule", TaskSchedule(**self.schedule))
        policy = self.retry_policy
        if isinstance(policy, str) and not isinstance(policy, RetryPolicy) and policy in _POLICY_VALUES:
            object.__setattr__(self, "retry_policy", RetryPolicy(policy))


def validate_definition(name: str, definition: Any) -> None:
    if not isinstance(definition, TaskDefinition):
        raise TaskSchedulerError.invalid_definition(
            name, f"expected TaskDefinition, got {type(definition).__name__}"
        )
    if not isinstance(definition.retry_policy, RetryPolicy):
        raise TaskSchedulerError.invalid_definition(
            name, f"unknown retry policy {definition.retry_policy!r}"
        )
    if isinstance(definition.timeout, bool) or not isinstance(definition.timeout, (int, float)):
        raise TaskSchedulerError.invalid_definition(name, "timeout must be a number of seconds")
    if definition.timeout <= 0:
        raise TaskSchedulerError.invalid_definition(name, "timeout must be positive")
    if not callable(definition.handler):
        raise TaskSchedulerError.invalid_definition(name, "handler is not callable")
    try:
        validate_schedule(definition.schedule)
    except ValueError as exc:
        raise TaskSchedulerError.invalid_schedule(name, definition.schedule.cron, str(exc)) from exc


class TaskRegistry(Mapping[str, TaskDefinition]):
    """
    Collects task definitions before they are handed to a ``TaskScheduler``.

        tasks = TaskRegistry()

        @tasks.task(cron="0 2 * * *", timeout=300, retry_policy="retry-on-fail")
        def send_overdue_reminders(span):
            ...
    """

    def __init__(self, tasks: Mapping[str, TaskDefinition] | None = None):
        self._tasks: dict[str, TaskDefinition] = {}
        for name, definition in (tasks or {}).items():
            self.register(name, definition)

    def register(self, name: str, definition: TaskDefinition) -> TaskDefinition:
        if not name:
            raise ValueError("Task name must be a non-empty string")
        if name in self._tasks:
            raise ValueError(f"Task {name!r} is already registered")
        self._tasks[name] = definition
        return definition

    def task(
        self,
        name: str | None = None,
        *,
        cron: str,
        timeout: float,
        retry_policy: RetryPolicy | str = RetryPolicy.IGNORE,
        timezone: str = "UTC",
        enabled: bool = True,
    ):
        def decorator(handler):
            key = name or getattr(handler, "__name__", None)
            if not key:
                raise ValueError("Unable to resolve task name; pass name= explicitly")
            self.register(
                key,
                TaskDefinition(
                    schedule=TaskSchedule(cron=cron, timezone=timezone, enabled=enabled),
                    timeout=timeout,
                    retry_policy=retry_policy,
                    handler=handler,
                ),
            )
            return handler
        return decorator

    def __getitem__(self, name: str) -> TaskDefinition:
        return self._tasks[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)
