from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Text, UniqueConstraint

from dailyhire.db.base import Base


class TransactionType:
    CREDIT = "credit"
    DEBIT = "debit"
    PENDING = "pending"
    RELEASED = "released"
    REFUND = "refund"  # pending funds voided by cancel-pending


class WalletTransaction(Base):
    """Append-only ledger entry. Never updated after insert."""

    __tablename__ = "wallet_transactions"
    __table_args__ = (
        UniqueConstraint("wallet_id", "booking_id", "type", name="uq_wallet_tx_booking_type"),
        CheckConstraint("amount > 0", name="ck_wallet_tx_amount_positive"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    wallet_id = Column(String, nullable=False, index=True)
    booking_id = Column(String, nullable=True, index=True)
    type = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
