"""Celery tasks for teamcoach.

Tasks are explicitly imported here to register them with Celery.
No autodiscovery - all tasks must be imported in this module.
"""

from teamcoach.tasks.automatic_backup import create_automatic_backups

__all__ = ["create_automatic_backups"]
