"""Celery application for payment housekeeping.

Redis is the broker only. The expiry sweep is fire-and-forget, so no result
backend is configured.
"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE


logger = get_logger(__name__)

TASK_MODULES = ("infrastructure.tasks.tasks.payments",)
PAYMENTS_QUEUE = "payments"


celery_app = Celery("marketplace_payments")

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    task_ignore_result=True,
    task_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # a sweep killed mid-run is redelivered; expiry is a compare-and-set, so reruns are safe
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_queues=(Queue(PAYMENTS_QUEUE), Queue("default")),
    task_routes={"payments.*": {"queue": PAYMENTS_QUEUE}},
    beat_schedule=CELERY_BEAT_SCHEDULE,
    imports=TASK_MODULES,
)

if (settings.ENVIRONMENT or "").lower() in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info("celery_configured", broker=sender.conf.broker_url, queue=PAYMENTS_QUEUE)
