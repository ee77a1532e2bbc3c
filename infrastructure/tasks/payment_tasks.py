"""
Celery tasks for payment reconciliation.

Webhooks can be lost; the sweep polls pending payments that have been open
for a while so they still converge to success, failure or expiry.
"""
from __future__ import annotations

import asyncio

from celery import shared_task

from application.services.reconciliation_service import ReconciliationService
from core.config import settings
from core.logging_config import get_logger
from infrastructure.tasks.utils.base_task import BaseTask


logger = get_logger(__name__)


async def _reconcile(older_than_minutes: int, limit: int) -> int:
    from infrastructure.database import engine
    from infrastructure.external.payments import build_registry
    from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

    # 每次 asyncio.run 都是新的事件循环，HTTP 客户端与连接池不能跨循环复用
    registry = build_registry()
    try:
        service = ReconciliationService(uow_factory=SQLAlchemyUnitOfWork, registry=registry)
        return await service.reconcile_stale(older_than_minutes=older_than_minutes, limit=limit)
    finally:
        await registry.aclose()
        await engine.dispose()


@shared_task(name="payments.reconcile_pending", bind=True, base=BaseTask, max_retries=3, default_retry_delay=30)
def reconcile_pending(self, older_than_minutes: int | None = None, limit: int | None = None):
    older = older_than_minutes or settings.celery.reconcile_older_than_minutes
    batch = limit or settings.celery.reconcile_batch_size
    try:
        polled = asyncio.run(_reconcile(older, batch))
    except Exception as exc:
        logger.error("payment_reconcile_failed", error=str(exc), error_type=type(exc).__name__)
        raise self.retry(exc=exc)
    logger.info("payment_reconcile_completed", polled=polled, older_than_minutes=older)
    return {"polled": polled}
