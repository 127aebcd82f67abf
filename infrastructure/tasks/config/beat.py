"""Celery beat schedule configuration.

Entries follow the Celery docs layout so new periodic jobs are a copy away.
"""
from __future__ import annotations

from core.settings import payment_settings

CELERY_BEAT_SCHEDULE = {
    # overdue QR codes and abandoned checkouts
    "payments-expire-stale": {
        "task": "payments.expire_stale",
        "schedule": 60.0,
        "kwargs": {"limit": payment_settings.expire_batch_size},
    },
}
