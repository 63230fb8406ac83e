"""
LedgerStore: two-tier wallets (pending / available) with an append-only log.

Every balance change is one conditional UPDATE guarded by the balance it
draws from, so two concurrent releases of the same pending funds cannot both
succeed: the loser updates zero rows and gets a typed failure.
"""
from __future__ import annotations

import logging
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from dailyhire.db.upsert import insert_ignore
from dailyhire.models.wallet import Wallet
from dailyhire.models.wallet_transaction import TransactionType, WalletTransaction
from dailyhire.services.policy import get_default_currency
from dailyhire.services.results import FailureKind, Result
from dailyhire.utils.dates import utcnow
from dailyhire.utils.metrics import ledger_operations_total, ledger_rejections_total

logger = logging.getLogger(__name__)


class LedgerReconciliation(BaseModel):
    wallet_id: str
    pending_balance: int
    available_balance: int
    expected_pending: int
    expected_available: int

    model_config = ConfigDict(frozen=True)

    @property
    def consistent(self) -> bool:
        return (
            self.pending_balance == self.expected_pending
            and self.available_balance == self.expected_available
        )


class LedgerStore:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    def get_wallet(self, wallet_id: str) -> Wallet | None:
        return (
            self.db.query(Wallet)
            .filter(Wallet.id == wallet_id)
            .populate_existing()
            .one_or_none()
        )

    def get_wallet_for(self, worker_id: str | None = None, business_id: str | None = None) -> Wallet | None:
        _check_owner(worker_id, business_id)
        query = self.db.query(Wallet)
        if worker_id is not None:
            query = query.filter(Wallet.worker_id == worker_id)
        else:
            query = query.filter(Wallet.business_id == business_id)
        return query.populate_existing().one_or_none()

    def get_or_create_wallet(
        self,
        worker_id: str | None = None,
        business_id: str | None = None,
        currency: str | None = None,
    ) -> Wallet:
        """Idempotent. Concurrent first calls for one owner end up with the same wallet."""
        existing = self.get_wallet_for(worker_id=worker_id, business_id=business_id)
        if existing:
            return existing

        owner_column = "worker_id" if worker_id is not None else "business_id"
        created = insert_ignore(
            self.db,
            Wallet,
            {
                "id": str(uuid4()),
                "worker_id": worker_id,
                "business_id": business_id,
                "pending_balance": 0,
                "available_balance": 0,
                "currency": (currency or get_default_currency()).upper(),
                "is_active": True,
            },
            [owner_column],
        )
        wallet = self.get_wallet_for(worker_id=worker_id, business_id=business_id)
        if created:
            logger.info(
                "wallet_created",
                extra={"wallet_id": wallet.id, "worker_id": worker_id, "business_id": business_id},
            )
        return wallet

    def set_active(self, wallet_id: str, is_active: bool) -> Result[Wallet]:
        """Freeze or unfreeze a wallet. Frozen wallets refuse every balance change."""
        wallet = self.get_wallet(wallet_id)
        if wallet is None:
            return Result.fail(FailureKind.NOT_FOUND, "Wallet not found", wallet_id=wallet_id)
        wallet.is_active = is_active
        self.db.add(wallet)
        self.db.flush()
        logger.info("wallet_frozen" if not is_active else "wallet_unfrozen", extra={"wallet_id": wallet_id})
        return Result.success(wallet)

    # ------------------------------------------------------------------
    # Balance operations
    # ------------------------------------------------------------------

    def credit_pending(
        self, wallet_id: str, amount: int, booking_id: str, description: str | None = None
    ) -> Result[Wallet]:
        _check_amount(amount)
        if not booking_id:
            raise ValueError("pending credit must reference a booking")
        if self._entry(wallet_id, booking_id, TransactionType.PENDING) is not None:
            return self._reject(
                TransactionType.PENDING, FailureKind.INVALID_STATE,
                "Booking already credited to this wallet", wallet_id, booking_id,
            )

        rows = self._apply(
            wallet_id,
            guards=(),
            pending_balance=Wallet.pending_balance + amount,
        )
        if rows == 0:
            return self._classify(TransactionType.PENDING, wallet_id, booking_id, None)
        return self._record(
            wallet_id, TransactionType.PENDING, amount, booking_id,
            description or "Pembayaran pekerjaan selesai",
        )

    def release(
        self, wallet_id: str, amount: int, booking_id: str, description: str | None = None
    ) -> Result[Wallet]:
        """Move a booking's funds pending -> available. Never clamps."""
        _check_amount(amount)
        refusal = self._check_pending_entry(TransactionType.RELEASED, wallet_id, amount, booking_id)
        if refusal is not None:
            return refusal

        rows = self._apply(
            wallet_id,
            guards=(Wallet.pending_balance >= amount,),
            pending_balance=Wallet.pending_balance - amount,
            available_balance=Wallet.available_balance + amount,
        )
        if rows == 0:
            return self._classify(TransactionType.RELEASED, wallet_id, booking_id, FailureKind.INVALID_STATE)
        return self._record(
            wallet_id, TransactionType.RELEASED, amount, booking_id,
            description or "Dana tersedia untuk penarikan",
        )

    def cancel_pending(
        self, wallet_id: str, amount: int, booking_id: str, description: str | None = None
    ) -> Result[Wallet]:
        """Void a booking's pending funds (symmetric reversal of credit_pending)."""
        _check_amount(amount)
        refusal = self._check_pending_entry(TransactionType.REFUND, wallet_id, amount, booking_id)
        if refusal is not None:
            return refusal

        rows = self._apply(
            wallet_id,
            guards=(Wallet.pending_balance >= amount,),
            pending_balance=Wallet.pending_balance - amount,
        )
        if rows == 0:
            return self._classify(TransactionType.REFUND, wallet_id, booking_id, FailureKind.INVALID_STATE)
        return self._record(
            wallet_id, TransactionType.REFUND, amount, booking_id,
            description or "Pembayaran dibatalkan",
        )

    def debit_available(
        self,
        wallet_id: str,
        amount: int,
        booking_id: str | None = None,
        description: str | None = None,
        reserved: int = 0,
    ) -> Result[Wallet]:
        """
        Withdrawal, or a booking-tagged clawback of funds already released.

        `reserved` is available money that must stay in the wallet, e.g. funds
        held by an open dispute.
        """
        _check_amount(amount)
        if reserved < 0:
            raise ValueError(f"reserved must not be negative, got {reserved!r}")
        if booking_id and self._entry(wallet_id, booking_id, TransactionType.DEBIT) is not None:
            return self._reject(
                TransactionType.DEBIT, FailureKind.INVALID_STATE,
                "Booking already debited from this wallet", wallet_id, booking_id,
            )

        rows = self._apply(
            wallet_id,
            guards=(Wallet.available_balance >= amount + reserved,),
            available_balance=Wallet.available_balance - amount,
        )
        if rows == 0:
            return self._classify(TransactionType.DEBIT, wallet_id, booking_id, FailureKind.INSUFFICIENT_FUNDS)
        return self._record(
            wallet_id, TransactionType.DEBIT, amount, booking_id,
            description or "Penarikan dana",
        )

    # ------------------------------------------------------------------
    # History & audit
    # ------------------------------------------------------------------

    def list_transactions(self, wallet_id: str, limit: int = 50) -> list[WalletTransaction]:
        return (
            self.db.query(WalletTransaction)
            .filter(WalletTransaction.wallet_id == wallet_id)
            .order_by(WalletTransaction.created_at.desc())
            .limit(limit)
            .all()
        )

    def reconcile(self, wallet_id: str) -> LedgerReconciliation | None:
        """Rebuild both balances from the log and compare with the wallet row."""
        wallet = self.get_wallet(wallet_id)
        if wallet is None:
            return None

        rows = (
            self.db.query(WalletTransaction.type, func.coalesce(func.sum(WalletTransaction.amount), 0))
            .filter(WalletTransaction.wallet_id == wallet_id)
            .group_by(WalletTransaction.type)
            .all()
        )
        totals = {tx_type: int(total) for tx_type, total in rows}
        expected_available = (
            totals.get(TransactionType.CREDIT, 0)
            + totals.get(TransactionType.RELEASED, 0)
            - totals.get(TransactionType.DEBIT, 0)
        )
        expected_pending = (
            totals.get(TransactionType.PENDING, 0)
            - totals.get(TransactionType.RELEASED, 0)
            - totals.get(TransactionType.REFUND, 0)
        )
        report = LedgerReconciliation(
            wallet_id=wallet_id,
            pending_balance=wallet.pending_balance,
            available_balance=wallet.available_balance,
            expected_pending=expected_pending,
            expected_available=expected_available,
        )
        if not report.consistent:
            logger.error(
                "ledger_reconciliation_mismatch",
                extra={"wallet_id": wallet_id, "reason": report.model_dump_json()},
            )
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _entry(self, wallet_id: str, booking_id: str, tx_type: str) -> WalletTransaction | None:
        return (
            self.db.query(WalletTransaction)
            .filter(
                WalletTransaction.wallet_id == wallet_id,
                WalletTransaction.booking_id == booking_id,
                WalletTransaction.type == tx_type,
            )
            .one_or_none()
        )

    def _check_pending_entry(
        self, operation: str, wallet_id: str, amount: int, booking_id: str
    ) -> Result | None:
        """Pending funds only leave through the booking that put them there, once."""
        if not booking_id:
            raise ValueError(f"{operation} must reference a booking")
        credited = self._entry(wallet_id, booking_id, TransactionType.PENDING)
        if credited is None:
            return self._reject(
                operation, FailureKind.INVALID_STATE,
                "No pending funds recorded for this booking", wallet_id, booking_id,
            )
        for closing in (TransactionType.RELEASED, TransactionType.REFUND):
            if self._entry(wallet_id, booking_id, closing) is not None:
                return self._reject(
                    operation, FailureKind.INVALID_STATE,
                    f"Pending funds for this booking were already {closing}", wallet_id, booking_id,
                )
        if amount > credited.amount:
            return self._reject(
                operation, FailureKind.INVALID_STATE,
                "Amount exceeds the pending funds of this booking", wallet_id, booking_id,
            )
        return None

    def _apply(self, wallet_id: str, guards: tuple, **values) -> int:
        stmt = (
            update(Wallet)
            .where(Wallet.id == wallet_id, Wallet.is_active.is_(True), *guards)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount

    def _classify(
        self, operation: str, wallet_id: str, booking_id: str | None, balance_kind: FailureKind | None
    ) -> Result:
        wallet = self.get_wallet(wallet_id)
        if wallet is None:
            return self._reject(operation, FailureKind.NOT_FOUND, "Wallet not found", wallet_id, booking_id)
        if not wallet.is_active:
            return self._reject(
                operation, FailureKind.INSUFFICIENT_CONTEXT, "Wallet is inactive", wallet_id, booking_id,
            )
        if balance_kind == FailureKind.INSUFFICIENT_FUNDS:
            message = "Available balance is insufficient"
        else:
            message = "Pending balance is lower than the amount"
        return self._reject(operation, balance_kind or FailureKind.INVALID_STATE, message, wallet_id, booking_id)

    def _reject(
        self, operation: str, kind: FailureKind, message: str, wallet_id: str, booking_id: str | None
    ) -> Result:
        ledger_rejections_total.labels(operation=operation, reason=kind.value).inc()
        logger.warning(
            "ledger_operation_rejected",
            extra={
                "event": operation,
                "reason": kind.value,
                "wallet_id": wallet_id,
                "booking_id": booking_id,
            },
        )
        return Result.fail(kind, message, wallet_id=wallet_id, booking_id=booking_id)

    def _record(
        self, wallet_id: str, tx_type: str, amount: int, booking_id: str | None, description: str
    ) -> Result[Wallet]:
        self.db.add(
            WalletTransaction(
                id=str(uuid4()),
                wallet_id=wallet_id,
                booking_id=booking_id,
                type=tx_type,
                amount=amount,
                description=description,
                created_at=utcnow(),
            )
        )
        self.db.flush()
        wallet = self.get_wallet(wallet_id)
        ledger_operations_total.labels(operation=tx_type).inc()
        logger.info(
            "ledger_entry_written",
            extra={
                "event": tx_type,
                "wallet_id": wallet_id,
                "booking_id": booking_id,
                "amount": amount,
            },
        )
        return Result.success(wallet)


def _check_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValueError(f"amount must be a positive integer, got {amount!r}")


def _check_owner(worker_id: str | None, business_id: str | None) -> None:
    if (worker_id is None) == (business_id is None):
        raise ValueError("a wallet belongs to exactly one worker or one business")
