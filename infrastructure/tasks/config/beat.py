"""Celery beat schedule configuration."""
from __future__ import annotations

from core.config import settings

CELERY_BEAT_SCHEDULE = {
    "payments-reconcile-pending": {
        "task": "payments.reconcile_pending",
        "schedule": float(settings.celery.reconcile_interval_seconds),
        "options": {"queue": "payments"},
    },
}
