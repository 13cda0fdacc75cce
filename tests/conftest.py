from __future__ import annotations

import os
import sys
from pathlib import Path

import django
import pytest
from django.conf import settings


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
TESTS = ROOT / "tests"
for path in (SRC, TESTS):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))


DATABASES = {"default": {"ENGINE": "django.db.backends.sqlite3", "NAME": ":memory:"}}

# Advisory-lock tests run only when a PostgreSQL database is provided.
if os.environ.get("SCHEDULED_TASKS_PG_NAME"):
    DATABASES["postgres"] = {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.environ["SCHEDULED_TASKS_PG_NAME"],
        "HOST": os.environ.get("SCHEDULED_TASKS_PG_HOST", "localhost"),
        "PORT": os.environ.get("SCHEDULED_TASKS_PG_PORT", "5432"),
        "USER": os.environ.get("SCHEDULED_TASKS_PG_USER", "postgres"),
        "PASSWORD": os.environ.get("SCHEDULED_TASKS_PG_PASSWORD", ""),
    }


if not settings.configured:
    settings.configure(
        DATABASES=DATABASES,
        INSTALLED_APPS=[
            "django.contrib.contenttypes",
            "scheduled_tasks",
        ],
        USE_TZ=True,
        SCHEDULED_TASKS_REGISTRY="sample_tasks.registry",
        SCHEDULED_TASKS_LOCK_BACKEND="auto",
        SECRET_KEY="test-secret",
    )
    django.setup()


@pytest.fixture(autouse=True, scope="session")
def _unblock_db_access(django_db_blocker):
    with django_db_blocker.unblock():
        yield
