from __future__ import annotations

from .conf import db_alias

APP_LABEL = "scheduled_tasks"


def _is_scheduler_model(model) -> bool:
    meta = getattr(model, "_meta", None)
    return meta is not None and meta.app_label == APP_LABEL


def _db_of(obj) -> str:
    """Alias a run or lock row lives on; unsaved rows go to the scheduler alias."""
    state = getattr(obj, "_state", None)
    return getattr(state, "db", None) or db_alias()


def _route(model, hints):
    if not _is_scheduler_model(model):
        return None
    instance = hints.get("instance")
    return _db_of(instance) if instance is not None else db_alias()


class ScheduledTasksRouter:
    """Keep task run and lock tables on ``SCHEDULED_TASKS_DB_ALIAS``."""

    def db_for_read(self, model, **hints):
        return _route(model, hints)

    def db_for_write(self, model, **hints):
        return _route(model, hints)

    def allow_relation(self, obj1, obj2, **hints):
        # A retry link must stay on one database.
        if not (_is_scheduler_model(obj1) and _is_scheduler_model(obj2)):
            return None
        return _db_of(obj1) == _db_of(obj2)

    def allow_migrate(self, db, app_label, model_name=None, **hints):
        if app_label != APP_LABEL:
            return None
        return db == db_alias()
