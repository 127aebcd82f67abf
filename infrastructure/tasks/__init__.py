"""Celery task infrastructure package.

Importing this module wires together the configured Celery app; task modules
are registered through `TASK_MODULES`.
"""
from .config.celery import celery_app

__all__ = ["celery_app"]
