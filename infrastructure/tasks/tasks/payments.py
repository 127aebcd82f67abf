"""Payment housekeeping tasks.

Each run owns its event loop (`asyncio.run`), so it also owns its engine and
gateway clients and disposes of them before returning.
"""
from __future__ import annotations

import asyncio

from celery import shared_task
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.logging_config import get_logger
from core.settings import payment_settings
from infrastructure.container import build_payment_services
from infrastructure.database import build_engine
from ..utils.base_task import BaseTask

logger = get_logger(__name__)


async def expire_stale_payments(limit: int) -> int:
    engine = build_engine()
    services = build_payment_services(async_sessionmaker(bind=engine, expire_on_commit=False))
    try:
        return await services.payments.expire_stale_payments(limit=limit)
    finally:
        await services.aclose()
        await engine.dispose()


@shared_task(
    name="payments.expire_stale",
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
)
def task_expire_stale_payments(self, limit: int | None = None) -> int:
    """Move active payments past their expiry to EXPIRED; the order stays payable."""
    count = asyncio.run(expire_stale_payments(limit or payment_settings.expire_batch_size))
    logger.info("expire_stale_payments_done", expired=count)
    return count
