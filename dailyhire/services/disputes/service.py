"""
DisputeGate: holds escrow while a complaint is open and applies the outcome.

While a dispute is pending or investigating the booking's payment_status is
`disputed`, which the release scheduler never selects.
"""
from __future__ import annotations

import logging
from uuid import uuid4

from sqlalchemy.orm import Session

from dailyhire.models.booking import Booking, PaymentStatus
from dailyhire.models.dispute import Dispute, DisputeStatus
from dailyhire.services.bookings.service import BookingStateMachine
from dailyhire.services.events import DomainEvent, EventBus, event_bus
from dailyhire.services.ledger.service import LedgerStore
from dailyhire.services.results import FailureKind, Result
from dailyhire.utils.dates import utcnow
from dailyhire.utils.metrics import disputes_total

logger = logging.getLogger(__name__)

DISPUTABLE = frozenset({PaymentStatus.PENDING_REVIEW, PaymentStatus.AVAILABLE})


class DisputeOutcome:
    RELEASE = "release"  # worker keeps the money
    CANCEL = "cancel"    # payment voided or clawed back
    REJECT = "reject"    # complaint dismissed, money released
    PARTIAL = "partial"  # split settlement, not supported

    SUPPORTED = frozenset({RELEASE, CANCEL, REJECT})


class DisputeGate:
    def __init__(
        self,
        db: Session,
        bookings: BookingStateMachine | None = None,
        ledger: LedgerStore | None = None,
        events: EventBus | None = None,
    ):
        self.db = db
        self.ledger = ledger or LedgerStore(db)
        self.events = events or event_bus
        self.bookings = bookings or BookingStateMachine(db, ledger=self.ledger, events=self.events)

    def raise_dispute(self, booking_id: str, raised_by: str, reason: str) -> Result[Dispute]:
        if not reason or not reason.strip():
            raise ValueError("dispute reason is required")

        booking = self.bookings.get_booking(booking_id, lock=True)
        if booking is None:
            return Result.fail(FailureKind.NOT_FOUND, "Booking not found", booking_id=booking_id)
        if booking.payment_status == PaymentStatus.DISPUTED or self.get_active_dispute(booking_id):
            return Result.fail(FailureKind.ALREADY_DISPUTED, "Booking already has an open dispute", booking_id=booking_id)
        if booking.payment_status not in DISPUTABLE:
            return Result.fail(
                FailureKind.INVALID_STATE,
                f"Payment is {booking.payment_status}; only escrowed payments can be disputed",
                booking_id=booking_id,
                payment_status=booking.payment_status,
            )

        dispute = Dispute(
            id=str(uuid4()),
            booking_id=booking.id,
            raised_by=raised_by,
            reason=reason.strip(),
            status=DisputeStatus.PENDING,
            previous_payment_status=booking.payment_status,
        )
        booking.payment_status = PaymentStatus.DISPUTED
        self.db.add(dispute)
        self.db.add(booking)
        self.db.flush()

        disputes_total.labels(action="raised").inc()
        self._emit("dispute_raised", booking)
        logger.info(
            "dispute_raised",
            extra={
                "dispute_id": dispute.id,
                "booking_id": booking.id,
                "user_id": raised_by,
                "old_status": dispute.previous_payment_status,
            },
        )
        return Result.success(dispute)

    def start_investigation(self, dispute_id: str) -> Result[Dispute]:
        dispute = self._get_dispute(dispute_id)
        if dispute is None:
            return Result.fail(FailureKind.NOT_FOUND, "Dispute not found", dispute_id=dispute_id)
        if dispute.status != DisputeStatus.PENDING:
            return Result.fail(
                FailureKind.INVALID_STATE, f"Dispute is {dispute.status}", dispute_id=dispute_id
            )
        dispute.status = DisputeStatus.INVESTIGATING
        self.db.add(dispute)
        self.db.flush()
        logger.info("dispute_investigating", extra={"dispute_id": dispute.id, "booking_id": dispute.booking_id})
        return Result.success(dispute)

    def resolve_dispute(self, dispute_id: str, outcome: str, admin_notes: str | None = None) -> Result[Dispute]:
        """
        release / reject: funds still pending are released now, regardless of
        the review deadline; funds that were already available stay available.
        cancel: pending funds are voided, available funds are clawed back.
        """
        if outcome not in DisputeOutcome.SUPPORTED:
            return Result.fail(
                FailureKind.INVALID_STATE, f"Unsupported dispute outcome: {outcome}", dispute_id=dispute_id
            )

        dispute = self._get_dispute(dispute_id)
        if dispute is None:
            return Result.fail(FailureKind.NOT_FOUND, "Dispute not found", dispute_id=dispute_id)
        if dispute.status not in DisputeStatus.ACTIVE:
            return Result.fail(FailureKind.INVALID_STATE, f"Dispute is already {dispute.status}", dispute_id=dispute_id)

        booking = self.bookings.get_booking(dispute.booking_id, lock=True)
        if booking is None or booking.payment_status != PaymentStatus.DISPUTED:
            return Result.fail(
                FailureKind.INVALID_STATE,
                "Booking payment is not held by this dispute",
                dispute_id=dispute_id,
                booking_id=dispute.booking_id,
            )

        if outcome == DisputeOutcome.CANCEL:
            applied = self._cancel_payment(booking, dispute)
        else:
            applied = self._release_payment(booking, dispute)
        if not applied.ok:
            logger.warning(
                "dispute_resolution_refused",
                extra={
                    "dispute_id": dispute.id,
                    "booking_id": booking.id,
                    "outcome": outcome,
                    "reason": applied.kind.value,
                },
            )
            return applied

        dispute.status = DisputeStatus.REJECTED if outcome == DisputeOutcome.REJECT else DisputeStatus.RESOLVED
        dispute.resolution = outcome
        dispute.admin_notes = admin_notes
        dispute.resolved_at = utcnow()
        self.db.add(dispute)
        self.db.flush()

        disputes_total.labels(action=outcome).inc()
        self._emit("dispute_resolved", booking, outcome=outcome, amount=booking.final_price)
        logger.info(
            "dispute_resolved",
            extra={
                "dispute_id": dispute.id,
                "booking_id": booking.id,
                "outcome": outcome,
                "payment_status": booking.payment_status,
            },
        )
        return Result.success(dispute)

    def get_active_dispute(self, booking_id: str) -> Dispute | None:
        return (
            self.db.query(Dispute)
            .filter(Dispute.booking_id == booking_id, Dispute.status.in_(sorted(DisputeStatus.ACTIVE)))
            .one_or_none()
        )

    def list_open_disputes(self, limit: int = 100) -> list[Dispute]:
        return (
            self.db.query(Dispute)
            .filter(Dispute.status.in_(sorted(DisputeStatus.ACTIVE)))
            .order_by(Dispute.created_at.asc())
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _release_payment(self, booking: Booking, dispute: Dispute) -> Result:
        if dispute.previous_payment_status == PaymentStatus.PENDING_REVIEW:
            return self.bookings.release_funds(booking, trigger="dispute")
        booking.payment_status = PaymentStatus.AVAILABLE
        self.db.add(booking)
        self.db.flush()
        return Result.success(booking)

    def _cancel_payment(self, booking: Booking, dispute: Dispute) -> Result:
        wallet = self.ledger.get_wallet_for(worker_id=booking.worker_id)
        if wallet is None:
            return Result.fail(FailureKind.INVALID_STATE, "Worker has no wallet", booking_id=booking.id)

        if dispute.previous_payment_status == PaymentStatus.PENDING_REVIEW:
            reversed_ = self.ledger.cancel_pending(
                wallet.id, booking.final_price, booking.id, "Pembayaran dibatalkan (sengketa)"
            )
        else:
            reversed_ = self.ledger.debit_available(
                wallet.id, booking.final_price, booking.id, "Dana ditarik kembali (sengketa)"
            )
        if not reversed_.ok:
            return reversed_

        booking.payment_status = PaymentStatus.CANCELLED
        self.db.add(booking)
        self.db.flush()
        self._emit("payment_cancelled", booking, amount=booking.final_price)
        return Result.success(booking)

    def _get_dispute(self, dispute_id: str) -> Dispute | None:
        return (
            self.db.query(Dispute)
            .filter(Dispute.id == dispute_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
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
