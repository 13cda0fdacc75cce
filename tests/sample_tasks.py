"""Task registry used by the management command tests."""

from scheduled_tasks import TaskRegistry

registry = TaskRegistry()

calls = []


@registry.task(cron="*/15 * * * *", timeout=5)
def refresh_exchange_rates(span):
    calls.append("refresh_exchange_rates")
    span.log("rates refreshed", currencies=3)
    return "Refreshed 3 currencies"


@registry.task(cron="0 2 * * *", timeout=5, retry_policy="retry-on-fail")
def purge_expired_quotes(span):
    calls.append("purge_expired_quotes")
    raise RuntimeError("storage unavailable")


@registry.task(cron="0 * * * *", timeout=5, enabled=False)
def disabled_report(span):
    calls.append("disabled_report")
    return "never"
