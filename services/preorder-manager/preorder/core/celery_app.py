"""
PreOrder Manager — Celery application

Uses Redis as both broker and result backend.
Beat fires the daily recurring-order materialization; run a single beat
instance per deployment.
"""
from celery import Celery
from celery.schedules import crontab

from preorder.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "preorder_manager",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["preorder.tasks.recurring_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone=settings.TIMEZONE,
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    beat_schedule={
        "materialize-recurring-preorders": {
            "task": "materialize_recurring_preorders",
            "schedule": crontab(hour=settings.RECURRING_RUN_HOUR, minute=settings.RECURRING_RUN_MINUTE),
        },
    },
)
