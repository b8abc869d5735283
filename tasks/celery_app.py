"""
tasks/celery_app.py
Celery instance for background jobs.

    celery -A tasks.celery_app worker --loglevel=info --concurrency=2
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from config.settings import settings
from shared.utils.log_config import configure_logging

celery_app = Celery(
    "vehicle_care",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["tasks.booking_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone=settings.BUSINESS_TIMEZONE,
    enable_utc=True,
    # a task is acked only once it has run; a lost worker requeues it
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=300,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
    result_expires=3600,
    task_default_queue="default",
    beat_schedule={
        "audit-slot-booking-symmetry": {
            "task": "tasks.booking_tasks.audit_slot_booking_symmetry",
            "schedule": crontab(minute=0),
        },
    },
)


@setup_logging.connect
def _use_json_logging(**kwargs):
    configure_logging()
