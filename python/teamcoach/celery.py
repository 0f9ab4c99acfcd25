"""Celery application configuration.

Central configuration for Celery used by both the API (for enqueuing)
and the worker (for executing tasks).

Usage:
    from teamcoach.celery import celery_app

    celery_app.send_task("create_automatic_backups")

Only tasks that never write cached entities run here: each process keeps
its own in-memory caches, and a worker cannot invalidate the API's.
"""

from celery import Celery
from celery.schedules import crontab

from teamcoach.config import get_settings

settings = get_settings()

celery_app = Celery("teamcoach")

celery_app.conf.broker_url = settings.effective_celery_broker_url
celery_app.conf.result_backend = settings.effective_celery_result_backend

celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.timezone = "UTC"
celery_app.conf.enable_utc = True

celery_app.conf.task_routes = {
    "create_automatic_backups": {"queue": "backups"},
}
celery_app.conf.task_default_queue = "default"

celery_app.conf.beat_schedule = {
    "nightly-automatic-backups": {
        "task": "create_automatic_backups",
        "schedule": crontab(hour=3, minute=0),
    },
}

# For testing: allow eager mode (synchronous execution)
celery_app.conf.task_always_eager = False


def get_celery_app() -> Celery:
    return celery_app
