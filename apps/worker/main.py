"""Celery worker entrypoint.

Run with:
    celery -A apps.worker.main:celery_app worker -Q backups,default --loglevel=info
    celery -A apps.worker.main:celery_app beat --loglevel=info

Task definitions are in the teamcoach.tasks package - no autodiscovery.
Every task calls configure_task_logging() so its log entries carry
task_name and task_id.
"""

from celery.signals import worker_process_init

from teamcoach.celery import celery_app
from teamcoach.config import get_settings
from teamcoach.logging import configure_logging, get_logger

# Each import registers the task with the celery_app
from teamcoach.tasks import create_automatic_backups  # noqa: F401


@worker_process_init.connect
def setup_worker_logging(**kwargs):
    """Configure structlog when a worker process starts."""
    configure_logging(json_format=get_settings().use_json_logs)
    logger = get_logger(__name__)
    logger.info("celery_worker_started", queues=["backups", "default"])


__all__ = ["celery_app"]
