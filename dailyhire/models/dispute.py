from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, String, Text, text

from dailyhire.db.base import Base


class DisputeStatus:
    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    REJECTED = "rejected"

    ACTIVE = frozenset({PENDING, INVESTIGATING})


class Dispute(Base):
    __tablename__ = "disputes"
    __table_args__ = (
        # at most one pending/investigating dispute per booking
        Index(
            "uq_disputes_booking_active",
            "booking_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'investigating')"),
            sqlite_where=text("status IN ('pending', 'investigating')"),
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    booking_id = Column(String, nullable=False, index=True)
    raised_by = Column(String, nullable=False, index=True)
    reason = Column(Text, nullable=False)
    status = Column(String, nullable=False, default=DisputeStatus.PENDING, index=True)
    # payment_status the booking had when the dispute was raised
    previous_payment_status = Column(String, nullable=False)
    resolution = Column(String, nullable=True)  # release / cancel / reject
    admin_notes = Column(Text, nullable=True)
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
    resolved_at = Column(DateTime(timezone=True), nullable=True)
