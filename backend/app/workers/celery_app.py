from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "coffee_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "app.workers.effect_tasks",
        "app.workers.sync_tasks",
    ],
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
    broker_connection_retry_on_startup=True,
)

celery_app.conf.beat_schedule = {
    "sweep-unapplied-effects": {
        "task": "app.workers.effect_tasks.sweep_unapplied_effects",
        "schedule": crontab(minute="*/5"),
    },
    "flush-document-outbox": {
        "task": "app.workers.sync_tasks.flush_document_outbox",
        "schedule": crontab(minute="*/2"),
    },
    "verify-open-ledgers-nightly": {
        "task": "app.workers.effect_tasks.verify_open_ledgers",
        "schedule": crontab(hour=1, minute=30),
    },
}
