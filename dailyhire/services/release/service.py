"""
ReleaseScheduler: moves escrow past its review deadline from pending to available.

Each booking is released in its own session and transaction under a time
bound, so one slow or failing booking never blocks or aborts the batch.
Re-running over the same state releases nothing twice: released bookings are
no longer pending_review and are counted as skipped.

The EventBus passed in must be installed on `session_factory` for
payment_released notifications to go out after each commit.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime

from pydantic import BaseModel, Field
from sqlalchemy import func, select, text

from dailyhire.db.session import session_scope
from dailyhire.models.booking import Booking, PaymentStatus
from dailyhire.models.dispute import Dispute, DisputeStatus
from dailyhire.services.bookings.service import BookingStateMachine
from dailyhire.services.events import EventBus, event_bus
from dailyhire.services.policy import get_release_batch_size, get_release_item_timeout
from dailyhire.services.results import FailureKind, Result
from dailyhire.utils.dates import as_utc, utcnow
from dailyhire.utils.metrics import release_batch_duration_seconds, release_failures_total

logger = logging.getLogger(__name__)

SKIPPABLE = frozenset({FailureKind.ALREADY_DISPUTED, FailureKind.NOT_YET_DUE})


class ReleaseFailure(BaseModel):
    booking_id: str
    reason: str
    message: str


class ReleaseReport(BaseModel):
    released_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    failures: list[ReleaseFailure] = Field(default_factory=list)


class ReleaseScheduler:
    def __init__(
        self,
        session_factory,
        events: EventBus | None = None,
        item_timeout: float | None = None,
        batch_size: int | None = None,
    ):
        self.session_factory = session_factory
        self.events = events or event_bus
        self.item_timeout = item_timeout if item_timeout is not None else get_release_item_timeout()
        self.batch_size = batch_size if batch_size is not None else get_release_batch_size()
        self._commit_lock = threading.Lock()

    def due_booking_ids(self, now: datetime) -> list[str]:
        with session_scope(self.session_factory) as db:
            return list(
                db.execute(
                    select(Booking.id)
                    .where(
                        Booking.payment_status == PaymentStatus.PENDING_REVIEW,
                        Booking.review_deadline < now,
                    )
                    .order_by(Booking.review_deadline.asc())
                    .limit(self.batch_size)
                ).scalars()
            )

    def held_by_dispute(self, now: datetime) -> int:
        """Overdue bookings whose pending escrow is frozen by an open dispute."""
        with session_scope(self.session_factory) as db:
            return db.execute(
                select(func.count(Booking.id))
                .join(Dispute, Dispute.booking_id == Booking.id)
                .where(
                    Booking.payment_status == PaymentStatus.DISPUTED,
                    Booking.review_deadline < now,
                    Dispute.status.in_(sorted(DisputeStatus.ACTIVE)),
                    Dispute.previous_payment_status == PaymentStatus.PENDING_REVIEW,
                )
            ).scalar_one()

    def release_due_payments(self, now: datetime | None = None) -> ReleaseReport:
        now = as_utc(now) or utcnow()
        started = time.monotonic()
        report = ReleaseReport(skipped_count=self.held_by_dispute(now))

        for booking_id in self.due_booking_ids(now):
            try:
                result = self._run_with_timeout(booking_id, now)
            except FutureTimeout:
                if self._released_despite_timeout(booking_id):
                    report.released_count += 1
                else:
                    self._fail(report, booking_id, "timeout", f"Release exceeded {self.item_timeout}s")
                continue
            except Exception as exc:
                logger.exception("release_item_error", extra={"booking_id": booking_id})
                self._fail(report, booking_id, "error", str(exc) or exc.__class__.__name__)
                continue

            if result is None or (not result.ok and result.kind in SKIPPABLE):
                report.skipped_count += 1
            elif result.ok:
                report.released_count += 1
            else:
                self._fail(report, booking_id, result.kind.value, result.failure.message)

        duration = time.monotonic() - started
        release_batch_duration_seconds.observe(duration)
        logger.info(
            "release_batch_finished",
            extra={
                "released": report.released_count,
                "failed": report.failed_count,
                "skipped": report.skipped_count,
                "duration_ms": int(duration * 1000),
            },
        )
        return report

    def release_one(
        self, booking_id: str, now: datetime, abandoned: threading.Event | None = None
    ) -> Result | None:
        """Release one booking in its own transaction. None means it no longer needs releasing."""
        db = self.session_factory()
        try:
            self._apply_timeouts(db)
            machine = BookingStateMachine(db, events=self.events)
            booking = machine.get_booking(booking_id)
            if booking is None or booking.payment_status != PaymentStatus.PENDING_REVIEW:
                db.rollback()
                return None

            result = machine.release_payment(booking_id, now=now, trigger="scheduler")
            with self._commit_lock:
                if result.ok and not (abandoned and abandoned.is_set()):
                    db.commit()
                else:
                    db.rollback()
            return result
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _run_with_timeout(self, booking_id: str, now: datetime) -> Result | None:
        abandoned = threading.Event()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="release")
        try:
            future = executor.submit(self.release_one, booking_id, now, abandoned)
            try:
                return future.result(timeout=self.item_timeout)
            except FutureTimeout:
                # Past this point the worker either has committed or will roll back.
                acquired = self._commit_lock.acquire(timeout=self.item_timeout)
                abandoned.set()
                if acquired:
                    self._commit_lock.release()
                else:
                    logger.warning("release_commit_unresolved", extra={"booking_id": booking_id})
                raise
        finally:
            executor.shutdown(wait=False)

    def _released_despite_timeout(self, booking_id: str) -> bool:
        with session_scope(self.session_factory) as db:
            status = db.execute(select(Booking.payment_status).where(Booking.id == booking_id)).scalar_one_or_none()
        if status != PaymentStatus.AVAILABLE:
            return False
        logger.warning("release_committed_after_timeout", extra={"booking_id": booking_id})
        return True

    def _apply_timeouts(self, db) -> None:
        if db.get_bind().dialect.name != "postgresql":
            return
        ms = max(int(self.item_timeout * 1000), 1)
        db.execute(text(f"SET LOCAL statement_timeout = {ms}"))
        db.execute(text(f"SET LOCAL lock_timeout = {ms}"))

    @staticmethod
    def _fail(report: ReleaseReport, booking_id: str, reason: str, message: str) -> None:
        report.failed_count += 1
        report.failures.append(ReleaseFailure(booking_id=booking_id, reason=reason, message=message))
        release_failures_total.labels(reason=reason).inc()
        logger.warning("release_item_failed", extra={"booking_id": booking_id, "reason": reason, "error": message})
