from __future__ import annotations

from collections.abc import Mapping

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils.module_loading import import_string

DEFAULT_DB_ALIAS = "default"
DEFAULT_STALE_RUN_GRACE_SECONDS = 60.0
LOCK_BACKENDS = ("auto", "advisory", "table")


def db_alias() -> str:
    return getattr(settings, "SCHEDULED_TASKS_DB_ALIAS", DEFAULT_DB_ALIAS)


def lock_backend() -> str:
    value = getattr(settings, "SCHEDULED_TASKS_LOCK_BACKEND", "auto")
    if value not in LOCK_BACKENDS:
        choices = ", ".join(LOCK_BACKENDS)
        raise ImproperlyConfigured(f"SCHEDULED_TASKS_LOCK_BACKEND must be one of: {choices}")
    return value


def stale_run_grace_seconds() -> float:
    value = getattr(settings, "SCHEDULED_TASKS_STALE_RUN_GRACE_SECONDS", DEFAULT_STALE_RUN_GRACE_SECONDS)
    try:
        seconds = float(value)
    except (TypeError, ValueError) as exc:
        raise ImproperlyConfigured("SCHEDULED_TASKS_STALE_RUN_GRACE_SECONDS must be a number") from exc
    if seconds < 0:
        raise ImproperlyConfigured("SCHEDULED_TASKS_STALE_RUN_GRACE_SECONDS must not be negative")
    return seconds


def task_registry() -> Mapping:
    path = getattr(settings, "SCHEDULED_TASKS_REGISTRY", None)
    if not path:
        raise ImproperlyConfigured(
            "SCHEDULED_TASKS_REGISTRY must be the dotted path of a mapping of task name -> TaskDefinition"
        )
    try:
        registry = import_string(path)
    except ImportError as exc:
        raise ImproperlyConfigured(f"Unable to import SCHEDULED_TASKS_REGISTRY {path!r}: {exc}") from exc
    if callable(registry) and not isinstance(registry, Mapping):
        registry = registry()
    if not isinstance(registry, Mapping):
        raise ImproperlyConfigured(f"SCHEDULED_TASKS_REGISTRY {path!r} is not a mapping")
    return registry


def build_scheduler(using: str | None = None):
    from .django_store import DjangoTaskRunStore
    from .scheduler import TaskScheduler

    return TaskScheduler(
        task_registry(),
        DjangoTaskRunStore(using=using),
        stale_run_grace=stale_run_grace_seconds(),
    )
