from __future__ import annotations

import hashlib
import logging
from contextlib import asynccontextmanager

from asgiref.sync import sync_to_async

from .errors import TaskSchedulerError
from .store import TaskRunStore

logger = logging.getLogger(__name__)

# Positive signed 64-bit range, so the id fits a PostgreSQL bigint.
_LOCK_ID_MASK = (1 << 63) - 1


def lock_id_for(task_name: str) -> int:
    digest = hashlib.sha256(task_name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") & _LOCK_ID_MASK


class AdvisoryLockManager:
    """
    Per-task mutual exclusion backed by the run store's lock primitive.

    Acquisition never blocks: ``try_acquire`` returns False when another holder
    has the lock. Errors raised by the store while acquiring are reported as
    ``TaskSchedulerError`` with code ``DATABASE_ERROR``; errors while releasing
    are logged and swallowed so that release can sit on every exit path.
    """

    def __init__(self, store: TaskRunStore):
        self.store = store

    async def try_acquire(self, lock_id: int) -> bool:
        try:
            acquired = await sync_to_async(self.store.try_acquire_lock, thread_sensitive=True)(lock_id)
        except Exception as exc:
            raise TaskSchedulerError.database_error("lock acquisition", exc) from exc
        logger.debug("scheduled_tasks_lock_acquire lock_id=%s acquired=%s", lock_id, acquired)
        return bool(acquired)

    async def release(self, lock_id: int) -> None:
        try:
            await sync_to_async(self.store.release_lock, thread_sensitive=True)(lock_id)
        except Exception:
            logger.exception("scheduled_tasks_lock_release_failed lock_id=%s", lock_id)
            return
        logger.debug("scheduled_tasks_lock_release lock_id=%s", lock_id)

    async def is_held(self, lock_id: int) -> bool:
        return bool(await sync_to_async(self.store.is_lock_held, thread_sensitive=True)(lock_id))

    @asynccontextmanager
    async def hold(self, lock_id: int):
        acquired = await self.try_acquire(lock_id)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(lock_id)
