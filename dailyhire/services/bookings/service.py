"""
BookingStateMachine: booking status and escrow payment status transitions.

status:         pending -> accepted | rejected | cancelled
                accepted -> in_progress | cancelled
                in_progress -> completed | cancelled
payment_status: none -> pending_review (checkout)
                pending_review -> available | disputed | cancelled
                available -> released | disputed
                disputed -> available | cancelled (dispute resolution only)

Methods flush and leave the commit to the caller, so a transition and the
ledger movement it triggers become durable together. Refusals come back as a
Result failure; nothing here raises for an expected business condition.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from uuid import uuid4

from sqlalchemy.orm import Session

from dailyhire.models.booking import Booking, BookingStatus, PaymentStatus
from dailyhire.models.dispute import Dispute, DisputeStatus
from dailyhire.models.job import Job
from dailyhire.models.worker import Worker
from dailyhire.services.bookings.pricing import compute_final_price
from dailyhire.services.compliance.service import ComplianceLevel, ComplianceTracker
from dailyhire.services.events import DomainEvent, EventBus, event_bus
from dailyhire.services.ledger.service import LedgerStore
from dailyhire.services.policy import get_review_window
from dailyhire.services.results import FailureKind, Result
from dailyhire.utils.dates import as_utc, utcnow
from dailyhire.utils.metrics import booking_transitions_total, compliance_blocks_total, payments_released_total

logger = logging.getLogger(__name__)

CANCELLABLE = frozenset({BookingStatus.PENDING, BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS})


class BookingStateMachine:
    def __init__(
        self,
        db: Session,
        ledger: LedgerStore | None = None,
        compliance: ComplianceTracker | None = None,
        events: EventBus | None = None,
    ):
        self.db = db
        self.ledger = ledger or LedgerStore(db)
        self.compliance = compliance or ComplianceTracker(db)
        self.events = events or event_bus

    def get_booking(self, booking_id: str, lock: bool = False) -> Booking | None:
        query = self.db.query(Booking).filter(Booking.id == booking_id)
        if lock:
            query = query.with_for_update()
        return query.populate_existing().one_or_none()

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def apply_for_job(
        self,
        worker_id: str,
        job_id: str,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> Result[Booking]:
        job = self.db.get(Job, job_id)
        if job is None:
            return Result.fail(FailureKind.NOT_FOUND, "Job not found", job_id=job_id)
        if job.status != "open":
            return Result.fail(FailureKind.INVALID_STATE, "Job is not open for applications", job_id=job_id)

        worker = self.db.get(Worker, worker_id)
        if worker is None:
            return Result.fail(FailureKind.NOT_FOUND, "Worker not found", worker_id=worker_id)
        if not worker.is_active:
            return Result.fail(FailureKind.INVALID_STATE, "Worker account is inactive", worker_id=worker_id)
        if not worker.is_kyc_verified:
            return Result.fail(FailureKind.NOT_VERIFIED, "Worker KYC is not verified", worker_id=worker_id)

        if end_date and start_date and end_date < start_date:
            raise ValueError("end_date must not be before start_date")

        duplicate = (
            self.db.query(Booking.id)
            .filter(
                Booking.worker_id == worker_id,
                Booking.job_id == job_id,
                Booking.status.notin_(sorted(BookingStatus.TERMINAL)),
            )
            .first()
        )
        if duplicate:
            return Result.fail(
                FailureKind.INVALID_STATE,
                "Worker already has an open application for this job",
                booking_id=duplicate.id,
            )

        booking = Booking(
            id=str(uuid4()),
            worker_id=worker_id,
            business_id=job.business_id,
            job_id=job_id,
            status=BookingStatus.PENDING,
            payment_status=PaymentStatus.NONE,
            start_date=start_date,
            end_date=end_date,
        )
        self.db.add(booking)
        self.db.flush()
        self._emit("booking_applied", booking)
        self._log_transition(booking, None)
        return Result.success(booking)

    def accept_application(self, booking_id: str, business_id: str) -> Result[Booking]:
        """Gate on the monthly cap first; a blocked worker comes back with alternatives."""
        booking = self.get_booking(booking_id, lock=True)
        refusal = self._check(booking, booking_id, {BookingStatus.PENDING})
        if refusal:
            return refusal
        if booking.business_id != business_id:
            return Result.fail(FailureKind.INVALID_STATE, "Booking belongs to another business", booking_id=booking_id)

        month = booking.start_date or utcnow().date()
        status = self.compliance.get_status(booking.business_id, booking.worker_id, month)
        if status.level == ComplianceLevel.BLOCKED:
            alternatives = self.compliance.get_alternative_workers(
                booking.business_id, month, exclude_worker_id=booking.worker_id
            )
            compliance_blocks_total.inc()
            logger.warning(
                "booking_accept_blocked",
                extra={
                    "booking_id": booking.id,
                    "worker_id": booking.worker_id,
                    "business_id": booking.business_id,
                    "days_worked": status.days_worked,
                },
            )
            return Result.fail(
                FailureKind.COMPLIANCE_LIMIT_EXCEEDED,
                status.message,
                booking_id=booking.id,
                days_worked=status.days_worked,
                alternatives=alternatives,
            )
        if status.level == ComplianceLevel.WARNING:
            logger.warning(
                "compliance_warning",
                extra={
                    "booking_id": booking.id,
                    "worker_id": booking.worker_id,
                    "business_id": booking.business_id,
                    "days_worked": status.days_worked,
                },
            )

        old = booking.status
        booking.status = BookingStatus.ACCEPTED
        self.db.add(booking)
        self.db.flush()
        self.compliance.record_booking_days(booking)
        self._emit("booking_accepted", booking)
        self._log_transition(booking, old)
        return Result.success(booking)

    def reject_application(self, booking_id: str, business_id: str, note: str | None = None) -> Result[Booking]:
        booking = self.get_booking(booking_id, lock=True)
        refusal = self._check(booking, booking_id, {BookingStatus.PENDING})
        if refusal:
            return refusal
        if booking.business_id != business_id:
            return Result.fail(FailureKind.INVALID_STATE, "Booking belongs to another business", booking_id=booking_id)

        old = booking.status
        booking.status = BookingStatus.REJECTED
        booking.cancellation_note = note
        self.db.add(booking)
        self.db.flush()
        self._emit("booking_rejected", booking)
        self._log_transition(booking, old)
        return Result.success(booking)

    def cancel_application(self, booking_id: str, actor_id: str, note: str | None = None) -> Result[Booking]:
        """
        Cancel a booking before completion, or void the escrowed payment of a
        completed booking still inside its review window.
        """
        booking = self.get_booking(booking_id, lock=True)
        if booking is None:
            return Result.fail(FailureKind.NOT_FOUND, "Booking not found", booking_id=booking_id)
        if actor_id not in (booking.worker_id, booking.business_id):
            return Result.fail(FailureKind.INVALID_STATE, "Actor is not a party to this booking", booking_id=booking_id)

        now = utcnow()
        if booking.status in CANCELLABLE:
            old = booking.status
            booking.status = BookingStatus.CANCELLED
            booking.cancelled_at = now
            booking.cancellation_note = note
            self.db.add(booking)
            self.db.flush()
            self._emit("booking_cancelled", booking)
            self._log_transition(booking, old)
            return Result.success(booking)

        if booking.status == BookingStatus.COMPLETED and booking.payment_status == PaymentStatus.PENDING_REVIEW:
            wallet = self.ledger.get_wallet_for(worker_id=booking.worker_id)
            if wallet is None:
                return Result.fail(FailureKind.INVALID_STATE, "Worker has no wallet", booking_id=booking_id)
            voided = self.ledger.cancel_pending(wallet.id, booking.final_price, booking.id)
            if not voided.ok:
                return voided
            old = booking.payment_status
            booking.payment_status = PaymentStatus.CANCELLED
            booking.cancelled_at = now
            booking.cancellation_note = note
            self.db.add(booking)
            self.db.flush()
            self._emit("payment_cancelled", booking, amount=booking.final_price)
            self._log_payment(booking, old)
            return Result.success(booking)

        return Result.fail(
            FailureKind.INVALID_STATE,
            f"Booking cannot be cancelled from status {booking.status}/{booking.payment_status}",
            booking_id=booking_id,
            status=booking.status,
            payment_status=booking.payment_status,
        )

    # ------------------------------------------------------------------
    # Work
    # ------------------------------------------------------------------

    def start_work(self, booking_id: str, worker_id: str) -> Result[Booking]:
        booking = self.get_booking(booking_id, lock=True)
        refusal = self._check(booking, booking_id, {BookingStatus.ACCEPTED})
        if refusal:
            return refusal
        if booking.worker_id != worker_id:
            return Result.fail(FailureKind.INVALID_STATE, "Booking belongs to another worker", booking_id=booking_id)

        old = booking.status
        booking.status = BookingStatus.IN_PROGRESS
        booking.checkin_time = utcnow()
        self.db.add(booking)
        self.db.flush()
        self.compliance.record_booking_days(booking)
        self._emit("work_started", booking)
        self._log_transition(booking, old)
        return Result.success(booking)

    def checkout(self, booking_id: str, worker_id: str | None = None, now: datetime | None = None) -> Result[Booking]:
        """Complete the work and put the final price into the worker's pending balance."""
        now = as_utc(now) or utcnow()
        booking = self.get_booking(booking_id, lock=True)
        refusal = self._check(booking, booking_id, {BookingStatus.IN_PROGRESS})
        if refusal:
            return refusal
        if worker_id is not None and booking.worker_id != worker_id:
            return Result.fail(FailureKind.INVALID_STATE, "Booking belongs to another worker", booking_id=booking_id)

        job = self.db.get(Job, booking.job_id)
        if job is None:
            return Result.fail(FailureKind.NOT_FOUND, "Job not found", job_id=booking.job_id)
        price = compute_final_price(booking, job)
        if price <= 0:
            return Result.fail(FailureKind.INVALID_STATE, "Booking has no payable amount", booking_id=booking_id)

        wallet = self.ledger.get_or_create_wallet(worker_id=booking.worker_id)
        credited = self.ledger.credit_pending(wallet.id, price, booking.id)
        if not credited.ok:
            return credited

        window = get_review_window()
        old = booking.status
        booking.status = BookingStatus.COMPLETED
        booking.final_price = price
        booking.payment_status = PaymentStatus.PENDING_REVIEW
        booking.checkout_time = now
        booking.review_deadline = now + window
        self.db.add(booking)
        self.db.flush()
        self._emit(
            "booking_checked_out",
            booking,
            amount=price,
            review_hours=int(window.total_seconds() // 3600),
        )
        self._log_transition(booking, old)
        return Result.success(booking)

    # ------------------------------------------------------------------
    # Escrow release
    # ------------------------------------------------------------------

    def release_payment(
        self,
        booking_id: str,
        now: datetime | None = None,
        override_deadline: bool = False,
        trigger: str = "manual",
    ) -> Result[Booking]:
        """pending_review -> available once the review window has passed and no dispute is open."""
        now = as_utc(now) or utcnow()
        booking = self.get_booking(booking_id, lock=True)
        if booking is None:
            return Result.fail(FailureKind.NOT_FOUND, "Booking not found", booking_id=booking_id)
        if booking.payment_status == PaymentStatus.DISPUTED:
            return Result.fail(FailureKind.ALREADY_DISPUTED, "Payment is held by a dispute", booking_id=booking_id)
        if booking.payment_status != PaymentStatus.PENDING_REVIEW:
            return Result.fail(
                FailureKind.INVALID_STATE,
                f"Payment is {booking.payment_status}, not pending_review",
                booking_id=booking_id,
                payment_status=booking.payment_status,
            )
        deadline = as_utc(booking.review_deadline)
        if not override_deadline and (deadline is None or now < deadline):
            return Result.fail(
                FailureKind.NOT_YET_DUE,
                "Review window has not ended",
                booking_id=booking_id,
                review_deadline=deadline,
            )
        if self._has_active_dispute(booking.id):
            return Result.fail(FailureKind.ALREADY_DISPUTED, "Payment is held by a dispute", booking_id=booking_id)

        return self.release_funds(booking, trigger=trigger)

    def release_funds(self, booking: Booking, trigger: str) -> Result[Booking]:
        """Move the booking's escrow to available. Callers own the precondition checks."""
        wallet = self.ledger.get_wallet_for(worker_id=booking.worker_id)
        if wallet is None:
            return Result.fail(FailureKind.INVALID_STATE, "Worker has no wallet", booking_id=booking.id)
        released = self.ledger.release(wallet.id, booking.final_price, booking.id)
        if not released.ok:
            return released

        old = booking.payment_status
        booking.payment_status = PaymentStatus.AVAILABLE
        self.db.add(booking)
        self.db.flush()
        payments_released_total.labels(trigger=trigger).inc()
        self._emit("payment_released", booking, amount=booking.final_price)
        self._log_payment(booking, old)
        return Result.success(booking)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check(self, booking: Booking | None, booking_id: str, allowed: set[str]) -> Result | None:
        if booking is None:
            return Result.fail(FailureKind.NOT_FOUND, "Booking not found", booking_id=booking_id)
        if booking.status not in allowed:
            return Result.fail(
                FailureKind.INVALID_STATE,
                f"Booking is {booking.status}, expected one of {sorted(allowed)}",
                booking_id=booking_id,
                status=booking.status,
            )
        return None

    def _has_active_dispute(self, booking_id: str) -> bool:
        return (
            self.db.query(Dispute.id)
            .filter(Dispute.booking_id == booking_id, Dispute.status.in_(sorted(DisputeStatus.ACTIVE)))
            .first()
            is not None
        )

    def _emit(self, name: str, booking: Booking, **payload) -> None:
        self.events.record(
            self.db,
            DomainEvent(
                name=name,
                booking_id=booking.id,
                worker_id=booking.worker_id,
                business_id=booking.business_id,
                payload=payload,
            ),
        )

    def _log_transition(self, booking: Booking, old: str | None) -> None:
        booking_transitions_total.labels(new_status=booking.status).inc()
        logger.info(
            "booking_status_changed",
            extra={
                "booking_id": booking.id,
                "worker_id": booking.worker_id,
                "business_id": booking.business_id,
                "old_status": old,
                "new_status": booking.status,
            },
        )

    def _log_payment(self, booking: Booking, old: str) -> None:
        logger.info(
            "booking_payment_status_changed",
            extra={
                "booking_id": booking.id,
                "worker_id": booking.worker_id,
                "amount": booking.final_price,
                "old_status": old,
                "new_status": booking.payment_status,
            },
        )
