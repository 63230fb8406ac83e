"""Tests for DisputeGate: escrow hold, resolution outcomes, interaction with the scheduler."""
from datetime import datetime, timedelta, timezone

import pytest

from dailyhire.models.booking import PaymentStatus
from dailyhire.models.dispute import DisputeStatus
from dailyhire.services.disputes.service import DisputeGate
from dailyhire.services.ledger.service import LedgerStore
from dailyhire.services.payouts.service import PayoutService
from dailyhire.services.release.service import ReleaseScheduler
from dailyhire.services.results import FailureKind

CHECKOUT_AT = datetime(2026, 3, 5, 17, 0, tzinfo=timezone.utc)
AFTER_WINDOW = CHECKOUT_AT + timedelta(hours=73)


@pytest.fixture
def gate(db, bus):
    return DisputeGate(db, events=bus)


def _balances(db, worker_id):
    wallet = LedgerStore(db).get_wallet_for(worker_id=worker_id)
    return wallet.pending_balance, wallet.available_balance


class TestRaise:
    def test_raise_holds_payment(self, make, gate):
        booking = make.booking(upto="completed")

        result = gate.raise_dispute(booking.id, booking.business_id, "Pekerja pulang lebih awal")

        assert result.ok
        dispute = result.value
        assert dispute.status == DisputeStatus.PENDING
        assert dispute.previous_payment_status == PaymentStatus.PENDING_REVIEW
        assert make.machine().get_booking(booking.id).payment_status == PaymentStatus.DISPUTED

    def test_only_one_active_dispute(self, make, gate):
        booking = make.booking(upto="completed")
        gate.raise_dispute(booking.id, booking.business_id, "Terlambat")

        result = gate.raise_dispute(booking.id, booking.worker_id, "Upah kurang")

        assert result.kind == FailureKind.ALREADY_DISPUTED

    def test_nothing_to_dispute_before_checkout(self, make, gate):
        booking = make.booking(upto="in_progress")
        result = gate.raise_dispute(booking.id, booking.business_id, "Tidak datang")
        assert result.kind == FailureKind.INVALID_STATE

    def test_reason_required(self, make, gate):
        booking = make.booking(upto="completed")
        with pytest.raises(ValueError):
            gate.raise_dispute(booking.id, booking.business_id, "   ")

    def test_disputed_payment_cannot_be_released_manually(self, make, gate):
        booking = make.booking(upto="completed")
        gate.raise_dispute(booking.id, booking.business_id, "Terlambat")

        result = make.machine().release_payment(booking.id, now=AFTER_WINDOW)

        assert result.kind == FailureKind.ALREADY_DISPUTED


class TestResolve:
    def test_release_outcome_frees_pending_funds(self, make, db, gate):
        booking = make.booking(upto="completed")
        dispute = gate.raise_dispute(booking.id, booking.business_id, "Terlambat").value

        result = gate.resolve_dispute(dispute.id, "release", admin_notes="Bukti absensi lengkap")

        assert result.ok
        assert result.value.status == DisputeStatus.RESOLVED
        assert result.value.resolution == "release"
        assert result.value.resolved_at is not None
        assert make.machine().get_booking(booking.id).payment_status == PaymentStatus.AVAILABLE
        assert _balances(db, booking.worker_id) == (0, 100_000)

    def test_cancel_outcome_voids_pending_funds(self, make, db, gate):
        booking = make.booking(upto="completed")
        dispute = gate.raise_dispute(booking.id, booking.business_id, "Tidak datang").value

        result = gate.resolve_dispute(dispute.id, "cancel")

        assert result.ok
        assert make.machine().get_booking(booking.id).payment_status == PaymentStatus.CANCELLED
        assert _balances(db, booking.worker_id) == (0, 0)

    def test_reject_outcome_dismisses_and_releases(self, make, db, gate):
        booking = make.booking(upto="completed")
        dispute = gate.raise_dispute(booking.id, booking.business_id, "Tidak puas").value

        result = gate.resolve_dispute(dispute.id, "reject")

        assert result.value.status == DisputeStatus.REJECTED
        assert make.machine().get_booking(booking.id).payment_status == PaymentStatus.AVAILABLE
        assert _balances(db, booking.worker_id) == (0, 100_000)

    def test_cancel_claws_back_available_funds(self, make, db, gate):
        booking = make.booking(upto="completed")
        make.machine().release_payment(booking.id, now=AFTER_WINDOW)
        dispute = gate.raise_dispute(booking.id, booking.business_id, "Pekerjaan tidak selesai").value
        assert dispute.previous_payment_status == PaymentStatus.AVAILABLE

        result = gate.resolve_dispute(dispute.id, "cancel")

        assert result.ok
        assert make.machine().get_booking(booking.id).payment_status == PaymentStatus.CANCELLED
        assert _balances(db, booking.worker_id) == (0, 0)

    def test_clawback_refused_when_funds_withdrawn(self, make, db, gate):
        booking = make.booking(upto="completed")
        make.machine().release_payment(booking.id, now=AFTER_WINDOW)
        PayoutService(db).withdraw(booking.worker_id, 60_000)
        dispute = gate.raise_dispute(booking.id, booking.business_id, "Pekerjaan tidak selesai").value

        result = gate.resolve_dispute(dispute.id, "cancel")

        assert result.kind == FailureKind.INSUFFICIENT_FUNDS
        assert gate.get_active_dispute(booking.id).id == dispute.id
        assert _balances(db, booking.worker_id) == (0, 40_000)

    def test_disputed_available_funds_held_from_withdrawal(self, make, db, gate):
        booking = make.booking(upto="completed")
        make.machine().release_payment(booking.id, now=AFTER_WINDOW)
        dispute = gate.raise_dispute(booking.id, booking.business_id, "Pekerjaan tidak selesai").value
        payouts = PayoutService(db)

        assert payouts.held_by_dispute(booking.worker_id) == 100_000
        assert payouts.withdraw(booking.worker_id, 100_000).kind == FailureKind.INSUFFICIENT_FUNDS
        assert _balances(db, booking.worker_id) == (0, 100_000)

        result = gate.resolve_dispute(dispute.id, "cancel")

        assert result.ok
        assert make.machine().get_booking(booking.id).payment_status == PaymentStatus.CANCELLED
        assert _balances(db, booking.worker_id) == (0, 0)

    def test_hold_covers_only_the_disputed_booking(self, make, db, gate):
        worker = make.worker()
        disputed = make.booking(worker=worker, upto="completed", checkout_at=CHECKOUT_AT - timedelta(days=1))
        clean = make.booking(worker=worker, upto="completed")
        machine = make.machine()
        machine.release_payment(disputed.id, now=AFTER_WINDOW)
        machine.release_payment(clean.id, now=AFTER_WINDOW)
        gate.raise_dispute(disputed.id, disputed.business_id, "Terlambat")

        payouts = PayoutService(db)

        assert payouts.withdraw(worker.id, 100_001).kind == FailureKind.INSUFFICIENT_FUNDS
        assert payouts.withdraw(worker.id, 100_000).ok
        assert make.machine().get_booking(clean.id).payment_status == PaymentStatus.RELEASED
        assert make.machine().get_booking(disputed.id).payment_status == PaymentStatus.DISPUTED
        assert _balances(db, worker.id) == (0, 100_000)

    def test_release_outcome_on_available_keeps_funds(self, make, db, gate):
        booking = make.booking(upto="completed")
        make.machine().release_payment(booking.id, now=AFTER_WINDOW)
        dispute = gate.raise_dispute(booking.id, booking.business_id, "Terlambat").value

        gate.resolve_dispute(dispute.id, "release")

        assert make.machine().get_booking(booking.id).payment_status == PaymentStatus.AVAILABLE
        assert _balances(db, booking.worker_id) == (0, 100_000)

    def test_partial_outcome_not_supported(self, make, gate):
        booking = make.booking(upto="completed")
        dispute = gate.raise_dispute(booking.id, booking.business_id, "Terlambat").value

        result = gate.resolve_dispute(dispute.id, "partial")

        assert result.kind == FailureKind.INVALID_STATE
        assert gate.get_active_dispute(booking.id) is not None

    def test_resolved_dispute_is_final(self, make, gate):
        booking = make.booking(upto="completed")
        dispute = gate.raise_dispute(booking.id, booking.business_id, "Terlambat").value
        gate.resolve_dispute(dispute.id, "release")

        result = gate.resolve_dispute(dispute.id, "cancel")

        assert result.kind == FailureKind.INVALID_STATE

    def test_investigation_then_resolution(self, make, gate):
        booking = make.booking(upto="completed")
        dispute = gate.raise_dispute(booking.id, booking.business_id, "Terlambat").value

        assert gate.start_investigation(dispute.id).value.status == DisputeStatus.INVESTIGATING
        assert gate.start_investigation(dispute.id).kind == FailureKind.INVALID_STATE
        assert [d.id for d in gate.list_open_disputes()] == [dispute.id]

        gate.resolve_dispute(dispute.id, "release")

        assert gate.list_open_disputes() == []

    def test_unknown_dispute(self, gate):
        assert gate.resolve_dispute("missing", "release").kind == FailureKind.NOT_FOUND


class TestSchedulerInteraction:
    def test_dispute_holds_release_until_resolved(self, make, db, session_factory, bus):
        booking = make.booking(upto="completed")
        DisputeGate(db, events=bus).raise_dispute(booking.id, booking.business_id, "Terlambat")
        db.commit()
        scheduler = ReleaseScheduler(session_factory, events=bus, item_timeout=10)

        held = scheduler.release_due_payments(now=AFTER_WINDOW)

        assert held.released_count == 0
        assert held.skipped_count == 1
        assert _balances(db, booking.worker_id) == (100_000, 0)

        gate = DisputeGate(db, events=bus)
        gate.resolve_dispute(gate.get_active_dispute(booking.id).id, "release")
        db.commit()

        after = scheduler.release_due_payments(now=AFTER_WINDOW + timedelta(minutes=15))

        assert (after.released_count, after.skipped_count) == (0, 0)
        assert _balances(db, booking.worker_id) == (0, 100_000)

    def test_dispute_on_available_funds_not_counted_as_skipped(self, make, db, session_factory, bus):
        booking = make.booking(upto="completed")
        make.machine().release_payment(booking.id, now=AFTER_WINDOW)
        DisputeGate(db, events=bus).raise_dispute(booking.id, booking.business_id, "Terlambat")
        db.commit()

        report = ReleaseScheduler(session_factory, events=bus, item_timeout=10).release_due_payments(
            now=AFTER_WINDOW + timedelta(hours=1)
        )

        assert (report.released_count, report.failed_count, report.skipped_count) == (0, 0, 0)
