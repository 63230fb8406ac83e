"""
Celery periodic task: release escrowed payments whose review window has ended.
"""
import logging

from dailyhire.core.celery_app import celery_app
from dailyhire.core.config import settings
from dailyhire.db.session import SessionLocal
from dailyhire.services.idempotency import IdempotencyStore
from dailyhire.services.release.service import ReleaseScheduler

logger = logging.getLogger(__name__)

RUN_LOCK_KEY = "release_due_payments:run"


@celery_app.task(name="dailyhire.workers.tasks.release_payments.release_due_payments")
def release_due_payments() -> dict:
    """One run at a time; an overlapping beat tick is skipped."""
    lock = IdempotencyStore()
    if not lock.check_and_set(RUN_LOCK_KEY, ttl_seconds=settings.release_lock_ttl_seconds):
        logger.info("release_due_payments_skipped", extra={"reason": "already_running"})
        return {"skipped_run": True}
    try:
        report = ReleaseScheduler(SessionLocal).release_due_payments()
        logger.info(
            "release_due_payments_done",
            extra={
                "released": report.released_count,
                "failed": report.failed_count,
                "skipped": report.skipped_count,
            },
        )
        return report.model_dump()
    except Exception:
        logger.exception("release_due_payments_error")
        return {"released_count": 0, "error": "exception"}
    finally:
        lock.release(RUN_LOCK_KEY)
