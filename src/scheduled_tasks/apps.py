from django.apps import AppConfig

from .conf import lock_backend, stale_run_grace_seconds


class ScheduledTasksConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "scheduled_tasks"
    verbose_name = "Scheduled Tasks"

    def ready(self) -> None:
        lock_backend()
        stale_run_grace_seconds()
