import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True
    dependencies = []

    operations = [
        migrations.CreateModel(
            name="ScheduledTaskRun",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("task_name", models.TextField()),
                (
                    "status",
                    models.TextField(
                        choices=[("RUNNING", "Running"), ("COMPLETED", "Completed"), ("FAILED", "Failed")],
                        default="RUNNING",
                    ),
                ),
                ("started_at", models.DateTimeField()),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("duration_ms", models.BigIntegerField(blank=True, null=True)),
                ("advisory_lock_id", models.BigIntegerField(blank=True, null=True)),
                ("result_message", models.TextField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, null=True)),
                ("error_code", models.TextField(blank=True, null=True)),
                ("logs_json", models.JSONField(blank=True, default=list)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "retry_of",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="retries",
                        to="scheduled_tasks.scheduledtaskrun",
                    ),
                ),
            ],
            options={
                "verbose_name": "Scheduled Task Run",
                "verbose_name_plural": "Scheduled Task Runs",
                "db_table": "scheduled_task_runs",
                "indexes": [
                    models.Index(fields=["task_name", "-started_at"], name="sched_runs_task_started_idx"),
                    models.Index(fields=["task_name", "status"], name="sched_runs_task_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ScheduledTaskLock",
            fields=[
                ("lock_id", models.BigIntegerField(primary_key=True, serialize=False)),
                ("holder", models.TextField()),
                ("acquired_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "verbose_name": "Scheduled Task Lock",
                "verbose_name_plural": "Scheduled Task Locks",
                "db_table": "scheduled_task_locks",
            },
        ),
    ]
