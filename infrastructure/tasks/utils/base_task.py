"""Common base task for payment Celery jobs"""
from __future__ import annotations

from celery import Task

from core.logging_config import get_logger

logger = get_logger(__name__)


class BaseTask(Task):
    """Structured lifecycle logging shared by payment jobs."""

    def _context(self, task_id) -> dict:
        return {
            "task_id": task_id,
            "task_name": self.name,
            "retries": self.request.retries if self.request else 0,
        }

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning("celery_task_retry", error=str(exc), **self._context(task_id))
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        # 重试耗尽后才会走到这里，待处理支付留给下一轮扫描
        logger.error("celery_task_failure", error=str(exc), kwargs=kwargs, **self._context(task_id))
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info("celery_task_success", result=retval, **self._context(task_id))
        super().on_success(retval, task_id, args, kwargs)
