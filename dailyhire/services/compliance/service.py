"""
ComplianceTracker: PP 35/2021 monthly work-day cap per (business, worker).

A worker may work at most `compliance_block_days` days per calendar month for
the same business. Worked days are stored per distinct date, so recording a
date twice counts once.
"""
from __future__ import annotations

import logging
from datetime import date
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from dailyhire.db.upsert import insert_ignore
from dailyhire.models.booking import Booking
from dailyhire.models.compliance import ComplianceTracking, ComplianceWorkedDay
from dailyhire.models.worker import Worker
from dailyhire.services.policy import get_alternative_workers_limit, get_block_days, get_warning_days
from dailyhire.utils.dates import iter_dates, month_start, utcnow

logger = logging.getLogger(__name__)


class ComplianceLevel(str, Enum):
    OK = "ok"
    WARNING = "warning"
    BLOCKED = "blocked"


class ComplianceStatus(BaseModel):
    days_worked: int
    level: ComplianceLevel
    month: date
    message: str

    model_config = ConfigDict(frozen=True)

    @property
    def can_accept(self) -> bool:
        return self.level != ComplianceLevel.BLOCKED


class AlternativeWorker(BaseModel):
    worker_id: str
    full_name: str
    days_worked: int
    level: ComplianceLevel

    model_config = ConfigDict(frozen=True)


def classify(days_worked: int) -> ComplianceLevel:
    if days_worked >= get_block_days():
        return ComplianceLevel.BLOCKED
    if days_worked >= get_warning_days():
        return ComplianceLevel.WARNING
    return ComplianceLevel.OK


def describe(days_worked: int, level: ComplianceLevel) -> str:
    limit = get_block_days()
    if level == ComplianceLevel.BLOCKED:
        return f"Worker reached the {limit}-day monthly limit for this business"
    if level == ComplianceLevel.WARNING:
        return f"Worker has {limit - days_worked} day(s) left of the {limit}-day monthly limit"
    return f"{days_worked} of {limit} days worked this month"


class ComplianceTracker:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_worked_day(
        self,
        business_id: str,
        worker_id: str,
        work_date: date,
        booking_id: str | None = None,
    ) -> bool:
        """Count `work_date` once for its month. Returns False if it was already counted."""
        inserted = insert_ignore(
            self.db,
            ComplianceWorkedDay,
            {
                "id": str(uuid4()),
                "business_id": business_id,
                "worker_id": worker_id,
                "work_date": work_date,
                "booking_id": booking_id,
            },
            ["business_id", "worker_id", "work_date"],
        )
        if not inserted:
            return False

        month = month_start(work_date)
        insert_ignore(
            self.db,
            ComplianceTracking,
            {
                "id": str(uuid4()),
                "business_id": business_id,
                "worker_id": worker_id,
                "month": month,
                "days_worked": 0,
            },
            ["business_id", "worker_id", "month"],
        )
        self.db.execute(
            update(ComplianceTracking)
            .where(
                ComplianceTracking.business_id == business_id,
                ComplianceTracking.worker_id == worker_id,
                ComplianceTracking.month == month,
            )
            .values(days_worked=ComplianceTracking.days_worked + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

        days = self._days_worked(business_id, worker_id, month)
        logger.info(
            "compliance_day_recorded",
            extra={
                "business_id": business_id,
                "worker_id": worker_id,
                "booking_id": booking_id,
                "days_worked": days,
                "compliance_level": classify(days).value,
            },
        )
        return True

    def record_booking_days(self, booking: Booking) -> int:
        """Record every date the booking covers. Returns how many were new."""
        start = booking.start_date or (booking.created_at or utcnow()).date()
        recorded = 0
        for work_date in iter_dates(start, booking.end_date):
            if self.record_worked_day(booking.business_id, booking.worker_id, work_date, booking.id):
                recorded += 1
        return recorded

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_status(self, business_id: str, worker_id: str, month: date | None = None) -> ComplianceStatus:
        month = month_start(month or utcnow())
        days = self._days_worked(business_id, worker_id, month)
        level = classify(days)
        return ComplianceStatus(days_worked=days, level=level, month=month, message=describe(days, level))

    def get_alternative_workers(
        self,
        business_id: str,
        month: date | None = None,
        limit: int | None = None,
        exclude_worker_id: str | None = None,
    ) -> list[AlternativeWorker]:
        """
        Active, KYC-verified workers still below the cap for this business.
        Fewest days first, ties by worker id. Workers with no record count as 0.
        """
        month = month_start(month or utcnow())
        limit = limit if limit is not None else get_alternative_workers_limit()

        worked = (
            select(ComplianceTracking.worker_id, ComplianceTracking.days_worked)
            .where(ComplianceTracking.business_id == business_id, ComplianceTracking.month == month)
            .subquery()
        )
        rows = self.db.execute(
            select(Worker.id, Worker.full_name, worked.c.days_worked)
            .outerjoin(worked, worked.c.worker_id == Worker.id)
            .where(Worker.is_active.is_(True), Worker.kyc_status == "verified")
        ).all()

        candidates = []
        for worker_id, full_name, days in rows:
            if worker_id == exclude_worker_id:
                continue
            days = days or 0
            level = classify(days)
            if level == ComplianceLevel.BLOCKED:
                continue
            candidates.append(
                AlternativeWorker(worker_id=worker_id, full_name=full_name, days_worked=days, level=level)
            )
        candidates.sort(key=lambda c: (c.days_worked, c.worker_id))
        return candidates[:limit]

    def get_business_records(self, business_id: str, limit: int = 100) -> list[ComplianceTracking]:
        return (
            self.db.query(ComplianceTracking)
            .filter(ComplianceTracking.business_id == business_id)
            .order_by(ComplianceTracking.month.desc(), ComplianceTracking.days_worked.desc())
            .populate_existing()
            .limit(limit)
            .all()
        )

    def get_worker_records(self, worker_id: str, limit: int = 100) -> list[ComplianceTracking]:
        return (
            self.db.query(ComplianceTracking)
            .filter(ComplianceTracking.worker_id == worker_id)
            .order_by(ComplianceTracking.month.desc(), ComplianceTracking.business_id)
            .populate_existing()
            .limit(limit)
            .all()
        )

    def _days_worked(self, business_id: str, worker_id: str, month: date) -> int:
        days = self.db.execute(
            select(ComplianceTracking.days_worked).where(
                ComplianceTracking.business_id == business_id,
                ComplianceTracking.worker_id == worker_id,
                ComplianceTracking.month == month,
            )
        ).scalar_one_or_none()
        return days or 0
