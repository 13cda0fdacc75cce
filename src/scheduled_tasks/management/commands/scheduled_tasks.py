from __future__ import annotations

from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand, CommandError
from django.db.models import Count

from scheduled_tasks.conf import build_scheduler, db_alias, task_registry
from scheduled_tasks.django_store import DjangoTaskRunStore
from scheduled_tasks.errors import TaskSchedulerError
from scheduled_tasks.locks import lock_id_for
from scheduled_tasks.models import ScheduledTaskRun
from scheduled_tasks.store import TaskRunStatus


class Command(BaseCommand):
    help = "Run and inspect cron-scheduled tasks"

    def add_arguments(self, parser):
        subparsers = parser.add_subparsers(dest="subcommand", required=True)

        run_parser = subparsers.add_parser("run", help="Evaluate every registered task once")
        run_parser.add_argument("--database", type=str, default="", help="Database alias for run records and locks")
        run_parser.add_argument(
            "--fail-on-error",
            action="store_true",
            help="Exit non-zero when any task failed during this pass",
        )

        status_parser = subparsers.add_parser("status", help="Show registered tasks and recent runs")
        status_parser.add_argument("--database", type=str, default="")
        status_parser.add_argument("--recent-limit", type=int, default=10, help="Number of recent runs to display")

        unlock_parser = subparsers.add_parser("unlock", help="Release a task lock left by a crashed process")
        unlock_parser.add_argument("--database", type=str, default="")
        target = unlock_parser.add_mutually_exclusive_group(required=True)
        target.add_argument("--task", type=str, help="Task name")
        target.add_argument("--lock-id", type=int, help="Raw lock id")

    def handle(self, *args, **options):
        subcommand = options["subcommand"]
        using = options.get("database") or db_alias()

        if subcommand == "run":
            self.run_tasks(using, options)
        elif subcommand == "status":
            self.run_status(using, options)
        elif subcommand == "unlock":
            self.run_unlock(using, options)

    def run_tasks(self, using, options):
        try:
            scheduler = build_scheduler(using=using)
        except (ImproperlyConfigured, TaskSchedulerError) as exc:
            raise CommandError(str(exc)) from exc

        summary = scheduler.run()
        self.stdout.write(self.style.MIGRATE_HEADING(f"Evaluated {len(summary.evaluated)} task(s)"))
        for name in summary.completed:
            self.stdout.write(self.style.SUCCESS(f"  completed: {name}"))
        for name in summary.failed:
            self.stdout.write(self.style.ERROR(f"  failed:    {name}"))
        if summary.skipped:
            self.stdout.write(f"  skipped:   {', '.join(summary.skipped)}")

        if summary.failed and options["fail_on_error"]:
            raise CommandError(f"{len(summary.failed)} task(s) failed: {', '.join(summary.failed)}")

    def run_status(self, using, options):
        runs = ScheduledTaskRun.objects.using(using)

        self.stdout.write(self.style.MIGRATE_HEADING("Scheduled tasks"))
        try:
            registry = task_registry()
        except ImproperlyConfigured as exc:
            self.stdout.write(self.style.WARNING(f"Registry unavailable: {exc}"))
            registry = {}
        for name, definition in registry.items():
            state = "enabled" if definition.schedule.enabled else "disabled"
            self.stdout.write(
                f"  {name:<30} {definition.schedule.cron:<15} {definition.schedule.timezone:<12} "
                f"{definition.retry_policy.value:<14} {state}"
            )

        self.stdout.write("\nRuns by Status:")
        counts = runs.values("status").annotate(count=Count("id")).order_by("status")
        if not counts:
            self.stdout.write(self.style.WARNING("  No task runs recorded."))
        for row in counts:
            if row["status"] == TaskRunStatus.COMPLETED.value:
                color = self.style.SUCCESS
            elif row["status"] == TaskRunStatus.FAILED.value:
                color = self.style.ERROR
            else:
                color = self.style.WARNING
            self.stdout.write(f"  {row['status']:<12}: {color(str(row['count']))}")

        running = runs.filter(status=TaskRunStatus.RUNNING.value).order_by("started_at")
        if running:
            self.stdout.write("\nRunning:")
            for run in running:
                self.stdout.write(f"  - {run.task_name} #{run.pk} since {run.started_at.isoformat()}")

        recent_limit = options["recent_limit"]
        if recent_limit > 0:
            self.stdout.write(f"\nRecent runs (last {recent_limit}):")
            for run in runs.order_by("-started_at", "-pk")[:recent_limit]:
                detail = run.error_message if run.status == TaskRunStatus.FAILED.value else run.result_message
                self.stdout.write(
                    f"  - {run.task_name} #{run.pk} {run.status} {run.started_at.isoformat()} {detail or ''}".rstrip()
                )

    def run_unlock(self, using, options):
        lock_id = options["lock_id"] if options.get("lock_id") is not None else lock_id_for(options["task"])
        store = DjangoTaskRunStore(using=using)
        try:
            if store.uses_advisory_locks():
                holders = store.lock_holders(lock_id)
                if not holders:
                    self.stdout.write(self.style.SUCCESS(f"Lock {lock_id} is not held."))
                    return
                self.stdout.write(
                    self.style.WARNING(
                        f"Lock {lock_id} is an advisory lock held by {', '.join(holders)}; "
                        "it is released when that database session ends."
                    )
                )
                return
            if store.force_release_lock(lock_id):
                self.stdout.write(self.style.SUCCESS(f"Released lock {lock_id}."))
            else:
                self.stdout.write(self.style.WARNING(f"Lock {lock_id} was not held."))
        except ImproperlyConfigured as exc:
            raise CommandError(str(exc)) from exc
