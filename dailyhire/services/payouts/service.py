"""
PayoutService: withdrawals from the available balance.

Withdrawn money is matched against the worker's available bookings oldest
first. A booking moves available -> released once the total of all
withdrawals covers it, so split withdrawals settle it too. released is
terminal.

Available funds of a booking under dispute are held: they cannot be
withdrawn until the dispute is resolved.
"""
from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from dailyhire.models.booking import Booking, PaymentStatus
from dailyhire.models.dispute import Dispute, DisputeStatus
from dailyhire.models.wallet_transaction import TransactionType, WalletTransaction
from dailyhire.services.events import DomainEvent, EventBus, event_bus
from dailyhire.services.ledger.service import LedgerStore
from dailyhire.services.results import FailureKind, Result
from dailyhire.utils.metrics import booking_transitions_total

logger = logging.getLogger(__name__)


class PayoutService:
    def __init__(self, db: Session, ledger: LedgerStore | None = None, events: EventBus | None = None):
        self.db = db
        self.ledger = ledger or LedgerStore(db)
        self.events = events or event_bus

    def withdraw(self, worker_id: str, amount: int) -> Result:
        wallet = self.ledger.get_wallet_for(worker_id=worker_id)
        if wallet is None:
            return Result.fail(FailureKind.NOT_FOUND, "Worker has no wallet", worker_id=worker_id)

        held = self.held_by_dispute(worker_id)
        debited = self.ledger.debit_available(wallet.id, amount, description="Penarikan dana", reserved=held)
        if not debited.ok:
            if held and debited.kind == FailureKind.INSUFFICIENT_FUNDS:
                logger.info(
                    "payout_blocked_by_dispute",
                    extra={"worker_id": worker_id, "wallet_id": wallet.id, "amount": amount, "held": held},
                )
            return debited

        settled = self._settle_covered(worker_id, wallet.id)
        self.events.record(
            self.db,
            DomainEvent(name="payout_completed", worker_id=worker_id, payload={"amount": amount}),
        )
        logger.info(
            "payout_completed",
            extra={"worker_id": worker_id, "wallet_id": wallet.id, "amount": amount, "released": settled},
        )
        return debited

    def held_by_dispute(self, worker_id: str) -> int:
        """Available money of this worker frozen by open disputes."""
        total = (
            self.db.query(func.coalesce(func.sum(Booking.final_price), 0))
            .join(Dispute, Dispute.booking_id == Booking.id)
            .filter(
                Booking.worker_id == worker_id,
                Booking.payment_status == PaymentStatus.DISPUTED,
                Dispute.status.in_(sorted(DisputeStatus.ACTIVE)),
                Dispute.previous_payment_status == PaymentStatus.AVAILABLE,
            )
            .scalar()
        )
        return int(total)

    def settle(self, booking_id: str) -> Result[Booking]:
        booking = (
            self.db.query(Booking)
            .filter(Booking.id == booking_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if booking is None:
            return Result.fail(FailureKind.NOT_FOUND, "Booking not found", booking_id=booking_id)
        if booking.payment_status != PaymentStatus.AVAILABLE:
            return Result.fail(
                FailureKind.INVALID_STATE,
                f"Payment is {booking.payment_status}, not available",
                booking_id=booking_id,
                payment_status=booking.payment_status,
            )
        self._mark_released(booking)
        self.db.flush()
        return Result.success(booking)

    def _settle_covered(self, worker_id: str, wallet_id: str) -> int:
        """Oldest first; stop at the first booking the uncovered withdrawals do not pay for."""
        withdrawn = (
            self.db.query(func.coalesce(func.sum(WalletTransaction.amount), 0))
            .filter(
                WalletTransaction.wallet_id == wallet_id,
                WalletTransaction.type == TransactionType.DEBIT,
                WalletTransaction.booking_id.is_(None),
            )
            .scalar()
        )
        already_settled = (
            self.db.query(func.coalesce(func.sum(Booking.final_price), 0))
            .filter(Booking.worker_id == worker_id, Booking.payment_status == PaymentStatus.RELEASED)
            .scalar()
        )
        bookings = (
            self.db.query(Booking)
            .filter(Booking.worker_id == worker_id, Booking.payment_status == PaymentStatus.AVAILABLE)
            .order_by(Booking.checkout_time.asc(), Booking.id.asc())
            .with_for_update()
            .populate_existing()
            .all()
        )
        remaining = int(withdrawn) - int(already_settled)
        settled = 0
        for booking in bookings:
            if booking.final_price > remaining:
                break
            self._mark_released(booking)
            remaining -= booking.final_price
            settled += 1
        self.db.flush()
        return settled

    def _mark_released(self, booking: Booking) -> None:
        booking.payment_status = PaymentStatus.RELEASED
        self.db.add(booking)
        booking_transitions_total.labels(new_status=PaymentStatus.RELEASED).inc()
        logger.info(
            "booking_payment_settled",
            extra={"booking_id": booking.id, "worker_id": booking.worker_id, "amount": booking.final_price},
        )
