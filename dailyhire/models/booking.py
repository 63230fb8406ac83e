"""
Booking: one engagement between a worker and a business for a job.
status drives the work lifecycle; payment_status drives escrow once checkout
has happened. Rows are never deleted once money has moved.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, Date, DateTime, Index, Integer, String, Text

from dailyhire.db.base import Base


class BookingStatus:
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    TERMINAL = frozenset({REJECTED, COMPLETED, CANCELLED})


class PaymentStatus:
    NONE = "none"
    PENDING_REVIEW = "pending_review"
    AVAILABLE = "available"
    RELEASED = "released"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"

    TERMINAL = frozenset({RELEASED, CANCELLED})


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_payment_status_review_deadline", "payment_status", "review_deadline"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    worker_id = Column(String, nullable=False, index=True)
    business_id = Column(String, nullable=False, index=True)
    job_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=BookingStatus.PENDING)
    payment_status = Column(String, nullable=False, default=PaymentStatus.NONE)
    final_price = Column(Integer, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    checkin_time = Column(DateTime(timezone=True), nullable=True)
    checkout_time = Column(DateTime(timezone=True), nullable=True)
    review_deadline = Column(DateTime(timezone=True), nullable=True, index=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_note = Column(Text, nullable=True)
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
