"""
Notification collaborator: turns committed domain events into user notifications.

Delivery is fire-and-forget. A failed notification is logged and dropped; it
never rolls back the booking or wallet change that triggered it.
"""
from __future__ import annotations

import logging
from typing import Protocol

from dailyhire.core.config import settings
from dailyhire.models.notification import Notification
from dailyhire.services.events import DomainEvent
from dailyhire.utils.currency import format_idr

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, user_id: str, title: str, body: str, deep_link: str | None = None) -> None:
        ...


class DatabaseNotifier:
    """Stores notifications in their own session, outside the engine's transaction."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def notify(self, user_id: str, title: str, body: str, deep_link: str | None = None) -> None:
        db = self.session_factory()
        try:
            db.add(Notification(user_id=user_id, title=title, body=body, link=deep_link))
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("notification_store_failed", extra={"user_id": user_id})
        finally:
            db.close()


# event name -> [(recipient, title, body template, deep link section)]
# recipient is "worker" or "business"; templates use str.format(**context)
TEMPLATES: dict[str, list[tuple[str, str, str, str]]] = {
    "booking_applied": [
        ("business", "Lamaran Baru", "Ada pekerja baru yang melamar pekerjaan Anda.", "bookings"),
    ],
    "booking_accepted": [
        ("worker", "Lamaran Diterima", "Selamat! Lamaran Anda telah diterima.", "jobs"),
    ],
    "booking_rejected": [
        ("worker", "Lamaran Ditolak", "Maaf, lamaran Anda tidak diterima.", "jobs"),
    ],
    "booking_cancelled": [
        ("worker", "Booking Dibatalkan", "Booking Anda telah dibatalkan.", "jobs"),
        ("business", "Booking Dibatalkan", "Sebuah booking telah dibatalkan.", "bookings"),
    ],
    "work_started": [
        ("business", "Pekerja Mulai Bekerja", "Pekerja telah check-in untuk pekerjaan Anda.", "bookings"),
    ],
    "booking_checked_out": [
        (
            "worker",
            "Checkout Berhasil",
            "Pembayaran {amount} sedang dalam proses review selama {review_hours} jam.",
            "earnings",
        ),
        (
            "business",
            "Pekerjaan Selesai",
            "Pekerja telah menyelesaikan pekerjaan. Silakan review dalam {review_hours} jam.",
            "bookings",
        ),
    ],
    "payment_released": [
        ("worker", "Dana Tersedia", "Pembayaran {amount} sudah tersedia untuk ditarik.", "wallet"),
    ],
    "payment_cancelled": [
        ("worker", "Pembayaran Dibatalkan", "Pembayaran {amount} untuk booking ini dibatalkan.", "wallet"),
    ],
    "dispute_raised": [
        ("worker", "Sengketa Dibuka", "Pembayaran ditahan sampai sengketa diselesaikan.", "earnings"),
        ("business", "Sengketa Dibuka", "Sengketa untuk booking ini sedang ditinjau.", "bookings"),
    ],
    "dispute_resolved": [
        ("worker", "Sengketa Selesai", "Sengketa telah diselesaikan: {outcome}.", "earnings"),
        ("business", "Sengketa Selesai", "Sengketa telah diselesaikan: {outcome}.", "bookings"),
    ],
    "payout_completed": [
        ("worker", "Penarikan Berhasil", "Penarikan {amount} berhasil diproses.", "wallet"),
    ],
}


class NotificationDispatcher:
    """EventBus subscriber that renders TEMPLATES and calls the notifier."""

    def __init__(self, notifier: Notifier) -> None:
        self.notifier = notifier

    def __call__(self, domain_event: DomainEvent) -> None:
        if not settings.notifications_enabled:
            return
        templates = TEMPLATES.get(domain_event.name)
        if not templates:
            return
        context = self._context(domain_event)
        for recipient, title, body, section in templates:
            user_id = domain_event.worker_id if recipient == "worker" else domain_event.business_id
            if not user_id:
                continue
            base = settings.worker_deep_link_base if recipient == "worker" else settings.business_deep_link_base
            try:
                self.notifier.notify(user_id, title, body.format(**context), f"{base}/{section}")
            except Exception:
                logger.exception(
                    "notification_failed",
                    extra={"event": domain_event.name, "user_id": user_id, "booking_id": domain_event.booking_id},
                )

    @staticmethod
    def _context(domain_event: DomainEvent) -> dict:
        payload = dict(domain_event.payload)
        amount = payload.get("amount")
        payload["amount"] = format_idr(amount) if amount is not None else ""
        payload.setdefault("review_hours", settings.review_window_hours)
        payload.setdefault("outcome", "")
        return payload


def register_notifications(bus, notifier: Notifier) -> NotificationDispatcher:
    dispatcher = NotificationDispatcher(notifier)
    bus.subscribe(dispatcher)
    return dispatcher
