"""
Celery application: broker and result backend from settings.
Periodic escrow jobs live in dailyhire.workers.tasks.
"""
from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging, worker_process_init

from dailyhire.core.config import settings

celery_app = Celery(
    "dailyhire",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "dailyhire.workers.tasks.release_payments",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=3600,
    result_expires=86400,
    beat_schedule={
        "release-due-payments": {
            "task": "dailyhire.workers.tasks.release_payments.release_due_payments",
            "schedule": crontab(minute=f"*/{settings.release_schedule_minutes}"),
        },
    },
)


@setup_logging.connect
def _configure_logging(**kwargs) -> None:
    from dailyhire.core.logging import configure_logging

    configure_logging()


@worker_process_init.connect
def _wire_events(**kwargs) -> None:
    """Post-commit events and stored notifications for every worker session."""
    from dailyhire.db.session import SessionLocal
    from dailyhire.services.events import event_bus
    from dailyhire.services.notifications.service import DatabaseNotifier, register_notifications

    event_bus.install(SessionLocal)
    register_notifications(event_bus, DatabaseNotifier(SessionLocal))
