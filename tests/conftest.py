"""Shared fixtures: file-backed SQLite per test, post-commit event bus, entity factory."""
from datetime import date, datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from dailyhire.db.init_db import create_all
from dailyhire.models.business import Business
from dailyhire.models.job import Job
from dailyhire.models.worker import Worker
from dailyhire.services.bookings.service import BookingStateMachine
from dailyhire.services.events import EventBus

CHECKOUT_AT = datetime(2026, 3, 5, 17, 0, tzinfo=timezone.utc)
WORK_DAY = date(2026, 3, 5)


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'dailyhire.db'}",
        connect_args={"check_same_thread": False},
    )
    create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def bus(session_factory):
    bus = EventBus()
    bus.install(session_factory)
    return bus


@pytest.fixture
def published(bus):
    """Events delivered to subscribers (i.e. after commit)."""
    received = []
    bus.subscribe(received.append)
    return received


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


class Factory:
    def __init__(self, db, bus):
        self.db = db
        self.bus = bus

    def machine(self) -> BookingStateMachine:
        return BookingStateMachine(self.db, events=self.bus)

    def worker(self, id=None, kyc_status="verified", is_active=True, full_name=None) -> Worker:
        worker = Worker(
            id=id or str(uuid4()),
            full_name=full_name or "Budi Santoso",
            kyc_status=kyc_status,
            is_active=is_active,
        )
        self.db.add(worker)
        self.db.flush()
        return worker

    def business(self, id=None) -> Business:
        business = Business(id=id or str(uuid4()), name="Warung Makan Sederhana")
        self.db.add(business)
        self.db.flush()
        return business

    def job(self, business=None, wage_amount=100_000, wage_period="fixed", status="open") -> Job:
        business = business or self.business()
        job = Job(
            id=str(uuid4()),
            business_id=business.id,
            title="Pelayan harian",
            wage_amount=wage_amount,
            wage_period=wage_period,
            status=status,
        )
        self.db.add(job)
        self.db.flush()
        return job

    def booking(
        self,
        worker=None,
        job=None,
        start_date=WORK_DAY,
        end_date=None,
        upto="pending",
        checkout_at=CHECKOUT_AT,
    ):
        """Drive a booking through the state machine up to `upto`."""
        worker = worker or self.worker()
        job = job or self.job()
        machine = self.machine()
        booking = machine.apply_for_job(worker.id, job.id, start_date, end_date).unwrap()
        if upto == "pending":
            return booking
        booking = machine.accept_application(booking.id, job.business_id).unwrap()
        if upto == "accepted":
            return booking
        booking = machine.start_work(booking.id, worker.id).unwrap()
        if upto == "in_progress":
            return booking
        return machine.checkout(booking.id, worker.id, now=checkout_at).unwrap()


@pytest.fixture
def make(db, bus):
    return Factory(db, bus)
