"""
Final price captured at checkout. Once set it is the amount that moves through
escrow; nothing downstream recomputes it.
"""
from __future__ import annotations

from dailyhire.models.booking import Booking
from dailyhire.models.job import Job
from dailyhire.utils.dates import iter_dates


def worked_days(booking: Booking) -> int:
    if booking.start_date is None:
        return 1
    return sum(1 for _ in iter_dates(booking.start_date, booking.end_date))


def compute_final_price(booking: Booking, job: Job) -> int:
    if booking.final_price:
        return booking.final_price
    if job.wage_period == "fixed":
        return job.wage_amount
    return job.wage_amount * worked_days(booking)
