from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

if TYPE_CHECKING:
    from .definitions import TaskSchedule
    from .store import TaskRun

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _zone(schedule: TaskSchedule) -> ZoneInfo:
    return ZoneInfo(schedule.timezone or "UTC")


def validate_schedule(schedule: TaskSchedule) -> None:
    if not isinstance(schedule.cron, str) or not schedule.cron.strip():
        raise ValueError("cron expression is empty")
    try:
        zone = _zone(schedule)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"unknown timezone {schedule.timezone!r}") from exc
    try:
        croniter(schedule.cron, datetime.now(zone))
    except (ValueError, KeyError) as exc:
        raise ValueError(str(exc)) from exc


def next_fire_after(schedule: TaskSchedule, when: datetime) -> datetime:
    """First cron fire time strictly after ``when``, in the schedule's timezone."""
    start = _aware(when).astimezone(_zone(schedule))
    return croniter(schedule.cron, start).get_next(datetime)


def is_due(schedule: TaskSchedule, now: datetime, runs: Sequence[TaskRun]) -> bool:
    """
    Decide whether a task should run at ``now`` given its run history.

    ``runs`` must be newest first. A task that has never run is due immediately;
    afterwards it is due once the next cron fire time after its latest run has
    been reached. Disabled or malformed schedules are never due.
    """
    if not schedule.enabled:
        return False
    try:
        validate_schedule(schedule)
    except ValueError as exc:
        logger.warning(
            "scheduled_tasks_invalid_schedule cron=%r timezone=%r error=%s",
            schedule.cron,
            schedule.timezone,
            exc,
        )
        return False
    if not runs:
        return True
    latest = runs[0]
    return _aware(now) >= next_fire_after(schedule, latest.started_at)
