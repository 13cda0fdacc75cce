from django.db import models

from .store import TaskRunStatus

STATUS_CHOICES = [(status.value, status.value.title()) for status in TaskRunStatus]


class ScheduledTaskRun(models.Model):
    task_name = models.TextField()
    status = models.TextField(choices=STATUS_CHOICES, default=TaskRunStatus.RUNNING.value)

    started_at = models.DateTimeField()
    completed_at = models.DateTimeField(null=True, blank=True)
    duration_ms = models.BigIntegerField(null=True, blank=True)

    advisory_lock_id = models.BigIntegerField(null=True, blank=True)

    result_message = models.TextField(null=True, blank=True)
    error_message = models.TextField(null=True, blank=True)
    error_code = models.TextField(null=True, blank=True)

    retry_of = models.ForeignKey(
        "self", on_delete=models.SET_NULL, null=True, blank=True, related_name="retries"
    )
    logs_json = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "scheduled_task_runs"
        verbose_name = "Scheduled Task Run"
        verbose_name_plural = "Scheduled Task Runs"
        indexes = [
            models.Index(fields=["task_name", "-started_at"], name="sched_runs_task_started_idx"),
            models.Index(fields=["task_name", "status"], name="sched_runs_task_status_idx"),
        ]

    def __str__(self):
        return f"{self.task_name} #{self.pk} ({self.status})"


class ScheduledTaskLock(models.Model):
    """Lock row used where PostgreSQL advisory locks are unavailable."""

    lock_id = models.BigIntegerField(primary_key=True)
    holder = models.TextField()
    acquired_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "scheduled_task_locks"
        verbose_name = "Scheduled Task Lock"
        verbose_name_plural = "Scheduled Task Locks"

    def __str__(self):
        return f"{self.lock_id} ({self.holder})"
