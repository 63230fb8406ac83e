"""Tests for ComplianceTracker: monthly work-day cap and alternative workers."""
from datetime import date, timedelta

import pytest

from dailyhire.services.compliance.service import ComplianceLevel, ComplianceTracker, classify

MARCH = date(2026, 3, 1)


@pytest.fixture
def tracker(db):
    return ComplianceTracker(db)


def _record_days(tracker, business_id, worker_id, count, month=MARCH):
    for offset in range(count):
        tracker.record_worked_day(business_id, worker_id, month + timedelta(days=offset))


class TestRecordWorkedDay:
    def test_same_date_counts_once(self, tracker):
        assert tracker.record_worked_day("biz", "w1", date(2026, 3, 4)) is True
        assert tracker.record_worked_day("biz", "w1", date(2026, 3, 4)) is False

        assert tracker.get_status("biz", "w1", MARCH).days_worked == 1

    def test_distinct_dates_accumulate(self, tracker):
        _record_days(tracker, "biz", "w1", 3)
        assert tracker.get_status("biz", "w1", MARCH).days_worked == 3

    def test_months_are_separate(self, tracker):
        tracker.record_worked_day("biz", "w1", date(2026, 3, 31))
        tracker.record_worked_day("biz", "w1", date(2026, 4, 1))

        assert tracker.get_status("biz", "w1", date(2026, 3, 15)).days_worked == 1
        assert tracker.get_status("biz", "w1", date(2026, 4, 15)).days_worked == 1

    def test_pairs_are_separate(self, tracker):
        _record_days(tracker, "biz-a", "w1", 5)
        _record_days(tracker, "biz-b", "w1", 2)

        assert tracker.get_status("biz-a", "w1", MARCH).days_worked == 5
        assert tracker.get_status("biz-b", "w1", MARCH).days_worked == 2
        assert tracker.get_status("biz-a", "w2", MARCH).days_worked == 0


class TestStatus:
    @pytest.mark.parametrize(
        "days,level",
        [
            (0, ComplianceLevel.OK),
            (14, ComplianceLevel.OK),
            (15, ComplianceLevel.WARNING),
            (20, ComplianceLevel.WARNING),
            (21, ComplianceLevel.BLOCKED),
            (25, ComplianceLevel.BLOCKED),
        ],
    )
    def test_classify_thresholds(self, days, level):
        assert classify(days) == level

    def test_status_levels_follow_recorded_days(self, tracker):
        _record_days(tracker, "biz", "w1", 15)
        warning = tracker.get_status("biz", "w1", MARCH)
        assert warning.level == ComplianceLevel.WARNING
        assert warning.can_accept
        assert "6 day(s) left" in warning.message

        _record_days(tracker, "biz", "w1", 21)
        blocked = tracker.get_status("biz", "w1", MARCH)
        assert blocked.days_worked == 21
        assert blocked.level == ComplianceLevel.BLOCKED
        assert not blocked.can_accept

    def test_month_is_normalized(self, tracker):
        status = tracker.get_status("biz", "w1", date(2026, 3, 17))
        assert status.month == MARCH
        assert status.level == ComplianceLevel.OK


class TestRecordBookingDays:
    def test_inclusive_range(self, make, tracker):
        booking = make.booking(start_date=date(2026, 3, 10), end_date=date(2026, 3, 12))

        assert tracker.record_booking_days(booking) == 3
        assert tracker.record_booking_days(booking) == 0
        status = tracker.get_status(booking.business_id, booking.worker_id, MARCH)
        assert status.days_worked == 3


class TestAlternativeWorkers:
    def test_sorted_by_days_then_id_without_blocked(self, make, tracker):
        business = make.business()
        for worker_id in ("w-a", "w-b", "w-c", "w-d"):
            make.worker(id=worker_id)
        make.worker(id="w-kyc", kyc_status="pending")
        make.worker(id="w-off", is_active=False)
        _record_days(tracker, business.id, "w-b", 5)
        _record_days(tracker, business.id, "w-d", 5)
        _record_days(tracker, business.id, "w-c", 21)
        _record_days(tracker, "other-business", "w-a", 21)

        alternatives = tracker.get_alternative_workers(business.id, MARCH)

        assert [a.worker_id for a in alternatives] == ["w-a", "w-b", "w-d"]
        assert [a.days_worked for a in alternatives] == [0, 5, 5]
        assert all(a.level != ComplianceLevel.BLOCKED for a in alternatives)

    def test_ordering_is_non_decreasing(self, make, tracker):
        business = make.business()
        for index, days in enumerate([18, 3, 11, 0, 16, 7]):
            worker = make.worker(id=f"w-{index}")
            _record_days(tracker, business.id, worker.id, days)

        days = [a.days_worked for a in tracker.get_alternative_workers(business.id, MARCH)]

        assert days == sorted(days)
        assert days == [0, 3, 7, 11, 16, 18]

    def test_exclude_and_limit(self, make, tracker):
        business = make.business()
        for worker_id in ("w-1", "w-2", "w-3"):
            make.worker(id=worker_id)

        alternatives = tracker.get_alternative_workers(business.id, MARCH, limit=1, exclude_worker_id="w-1")

        assert [a.worker_id for a in alternatives] == ["w-2"]


class TestRecords:
    def test_business_and_worker_views(self, tracker):
        _record_days(tracker, "biz-a", "w1", 4)
        _record_days(tracker, "biz-a", "w2", 2)
        _record_days(tracker, "biz-b", "w1", 1)

        business_rows = tracker.get_business_records("biz-a")
        worker_rows = tracker.get_worker_records("w1")

        assert [(r.worker_id, r.days_worked) for r in business_rows] == [("w1", 4), ("w2", 2)]
        assert sorted((r.business_id, r.days_worked) for r in worker_rows) == [("biz-a", 4), ("biz-b", 1)]
