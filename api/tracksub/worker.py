from celery import Celery
from celery.schedules import crontab

from tracksub.core.config import settings

celery_app = Celery(
    "tracksub",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

# ─── Scheduled tasks ──────────────────────────
celery_app.conf.beat_schedule = {
    "send-payment-reminders-daily": {
        "task": "tracksub.services.notifications.send_reminders",
        "schedule": crontab(hour=settings.reminder_hour_utc, minute=0),
    },
}

# Task modules are listed explicitly; none is named tasks.py
celery_app.conf.include = [
    "tracksub.services.notifications",
]
