from __future__ import annotations

import logging
import os
import socket
import uuid
from datetime import datetime

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.db import IntegrityError, connections, transaction
from django.utils import timezone

from .conf import db_alias, lock_backend
from .models import ScheduledTaskLock, ScheduledTaskRun
from .store import CreateTaskRunData, TaskRun, TaskRunStatus, UpdateTaskRunData

logger = logging.getLogger(__name__)

# Session advisory locks are re-entrant in PostgreSQL, so a second acquisition
# from the same session has to be refused explicitly.
_PG_TRY_LOCK_SQL = """
SELECT CASE
  WHEN EXISTS (
    SELECT 1 FROM pg_locks
    WHERE locktype = 'advisory'
      AND pid = pg_backend_pid()
      AND classid = CAST(%s AS oid)
      AND objid = CAST(%s AS oid)
      AND objsubid = 1
  ) THEN false
  ELSE pg_try_advisory_lock(%s)
END
"""

_PG_LOCK_HOLDERS_SQL = """
SELECT pid FROM pg_locks
WHERE locktype = 'advisory'
  AND granted
  AND classid = CAST(%s AS oid)
  AND objid = CAST(%s AS oid)
  AND objsubid = 1
"""


def _split_key(lock_id: int) -> tuple[int, int]:
    return lock_id >> 32, lock_id & 0xFFFFFFFF


def _from_db(value: datetime | None) -> datetime | None:
    # Naive values are local time in TIME_ZONE when USE_TZ is off.
    if value is not None and timezone.is_naive(value):
        return timezone.make_aware(value, timezone.get_default_timezone())
    return value


def _to_db(value: datetime | None) -> datetime | None:
    if value is not None and not settings.USE_TZ and timezone.is_aware(value):
        return timezone.make_naive(value, timezone.get_default_timezone())
    return value


def _to_record(row: ScheduledTaskRun) -> TaskRun:
    return TaskRun(
        id=str(row.pk),
        task_name=row.task_name,
        status=TaskRunStatus(row.status),
        started_at=_from_db(row.started_at),
        completed_at=_from_db(row.completed_at),
        duration_ms=row.duration_ms,
        advisory_lock_id=row.advisory_lock_id,
        result_message=row.result_message,
        error_message=row.error_message,
        error_code=row.error_code,
        retry_of_run_id=str(row.retry_of_id) if row.retry_of_id is not None else None,
        logs=tuple(row.logs_json or ()),
    )


class DjangoTaskRunStore:
    """
    ``TaskRunStore`` backed by the Django ORM.

    On PostgreSQL, task locks are session advisory locks, released by the server
    when the owning connection dies. Other databases use rows in
    ``scheduled_task_locks``; a crashed holder leaves its row behind until it is
    removed with ``manage.py scheduled_tasks unlock``.
    """

    def __init__(self, using: str | None = None, lock_backend: str | None = None, holder: str | None = None):
        self.using = using or db_alias()
        self._lock_backend = lock_backend
        self.holder = holder or f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

    @property
    def connection(self):
        return connections[self.using]

    def uses_advisory_locks(self) -> bool:
        backend = self._lock_backend or lock_backend()
        vendor = self.connection.vendor
        if backend == "auto":
            return vendor == "postgresql"
        if backend == "advisory" and vendor != "postgresql":
            raise ImproperlyConfigured(f"Advisory locks require PostgreSQL, not {vendor}")
        return backend == "advisory"

    def _runs(self):
        return ScheduledTaskRun.objects.using(self.using)

    def _lock_rows(self):
        return ScheduledTaskLock.objects.using(self.using)

    def now(self) -> datetime:
        return _from_db(timezone.now())

    def create_task_run(self, data: CreateTaskRunData) -> TaskRun:
        row = self._runs().create(
            task_name=data.task_name,
            status=TaskRunStatus(data.status).value,
            started_at=_to_db(data.started_at),
            advisory_lock_id=data.advisory_lock_id,
            retry_of_id=int(data.retry_of_run_id) if data.retry_of_run_id else None,
        )
        return _to_record(row)

    def update_task_run(self, run_id: str, patch: UpdateTaskRunData) -> TaskRun:
        changes = patch.changes()
        fields = {}
        for key, value in changes.items():
            if key == "status":
                fields["status"] = TaskRunStatus(value).value
            elif key == "logs":
                fields["logs_json"] = list(value)
            elif key == "completed_at":
                fields["completed_at"] = _to_db(value)
            else:
                fields[key] = value
        fields["updated_at"] = timezone.now()

        queryset = self._runs().filter(pk=run_id)
        if "status" in changes:
            queryset = queryset.filter(status=TaskRunStatus.RUNNING.value)
        if not queryset.update(**fields):
            if not self._runs().filter(pk=run_id).exists():
                raise ScheduledTaskRun.DoesNotExist(f"Task run {run_id} not found")
            raise ValueError(f"Task run {run_id} is already finalized")
        return _to_record(self._runs().get(pk=run_id))

    def find_running_run(self, task_name: str) -> TaskRun | None:
        row = (
            self._runs()
            .filter(task_name=task_name, status=TaskRunStatus.RUNNING.value)
            .order_by("-started_at", "-pk")
            .first()
        )
        return _to_record(row) if row is not None else None

    def find_runs_for_task(
        self, task_name: str, since: datetime | None = None, limit: int | None = None
    ) -> list[TaskRun]:
        queryset = self._runs().filter(task_name=task_name)
        if since is not None:
            queryset = queryset.filter(started_at__gte=_to_db(since))
        queryset = queryset.order_by("-started_at", "-pk")
        if limit is not None:
            queryset = queryset[:limit]
        return [_to_record(row) for row in queryset]

    def try_acquire_lock(self, lock_id: int) -> bool:
        if self.uses_advisory_locks():
            classid, objid = _split_key(lock_id)
            with self.connection.cursor() as cursor:
                cursor.execute(_PG_TRY_LOCK_SQL, [classid, objid, lock_id])
                return bool(cursor.fetchone()[0])
        try:
            with transaction.atomic(using=self.using):
                self._lock_rows().create(lock_id=lock_id, holder=self.holder)
        except IntegrityError:
            return False
        return True

    def release_lock(self, lock_id: int) -> None:
        if self.uses_advisory_locks():
            with self.connection.cursor() as cursor:
                cursor.execute("SELECT pg_advisory_unlock(%s)", [lock_id])
            return
        self._lock_rows().filter(lock_id=lock_id, holder=self.holder).delete()

    def force_release_lock(self, lock_id: int) -> bool:
        """Drop a lock row whoever holds it. Not applicable to advisory locks."""
        if self.uses_advisory_locks():
            raise ImproperlyConfigured(
                "Advisory locks belong to a database session and are released when it ends"
            )
        deleted, _ = self._lock_rows().filter(lock_id=lock_id).delete()
        if deleted:
            logger.warning("scheduled_tasks_lock_force_released lock_id=%s", lock_id)
        return bool(deleted)

    def is_lock_held(self, lock_id: int) -> bool:
        return bool(self.lock_holders(lock_id))

    def lock_holders(self, lock_id: int) -> list[str]:
        if self.uses_advisory_locks():
            classid, objid = _split_key(lock_id)
            with self.connection.cursor() as cursor:
                cursor.execute(_PG_LOCK_HOLDERS_SQL, [classid, objid])
                return [f"pid:{row[0]}" for row in cursor.fetchall()]
        return list(self._lock_rows().filter(lock_id=lock_id).values_list("holder", flat=True))
