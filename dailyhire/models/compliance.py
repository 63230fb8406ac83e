"""
PP 35/2021 tracking: days a worker worked for one business per calendar month.
ComplianceWorkedDay keeps the distinct dates so a date is counted once.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, Date, DateTime, Integer, String, UniqueConstraint

from dailyhire.db.base import Base


class ComplianceTracking(Base):
    __tablename__ = "compliance_tracking"
    __table_args__ = (
        UniqueConstraint("business_id", "worker_id", "month", name="uq_compliance_business_worker_month"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    business_id = Column(String, nullable=False, index=True)
    worker_id = Column(String, nullable=False, index=True)
    month = Column(Date, nullable=False, index=True)  # first day of month
    days_worked = Column(Integer, nullable=False, default=0)
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


class ComplianceWorkedDay(Base):
    __tablename__ = "compliance_worked_days"
    __table_args__ = (
        UniqueConstraint("business_id", "worker_id", "work_date", name="uq_worked_day"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    business_id = Column(String, nullable=False)
    worker_id = Column(String, nullable=False)
    work_date = Column(Date, nullable=False)
    booking_id = Column(String, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
