"""
Wallet: two-tier balance for exactly one worker or one business.
pending_balance: earned, still inside the review window.
available_balance: cleared, may be withdrawn.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String

from dailyhire.db.base import Base


class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("pending_balance >= 0", name="ck_wallets_pending_nonnegative"),
        CheckConstraint("available_balance >= 0", name="ck_wallets_available_nonnegative"),
        CheckConstraint(
            "(worker_id IS NULL) <> (business_id IS NULL)",
            name="ck_wallets_single_owner",
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    worker_id = Column(String, nullable=True, unique=True)
    business_id = Column(String, nullable=True, unique=True)
    pending_balance = Column(Integer, nullable=False, default=0)
    available_balance = Column(Integer, nullable=False, default=0)
    currency = Column(String, nullable=False, default="IDR")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def owner_id(self) -> str:
        return self.worker_id or self.business_id
