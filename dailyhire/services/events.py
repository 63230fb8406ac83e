"""
Domain events, delivered only after the transaction that produced them commits.

Services record events on the SQLAlchemy session (`EventBus.record`); an
`after_commit` listener hands them to subscribers, a rollback drops them.
Subscribers are side-effect collaborators (notifications); their failures are
logged and never reach the financial transition that emitted the event.
"""
from __future__ import annotations

import logging
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class DomainEvent(BaseModel):
    name: str
    booking_id: str | None = None
    worker_id: str | None = None
    business_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


Handler = Callable[[DomainEvent], None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: list[Handler] = []
        self._key = f"domain_events:{id(self)}"

    def subscribe(self, handler: Handler) -> None:
        self._handlers.append(handler)

    def install(self, target) -> None:
        """Attach to a Session, sessionmaker or Session class."""
        event.listen(target, "after_commit", self._on_commit)
        event.listen(target, "after_rollback", self._on_rollback)

    def record(self, db: Session, domain_event: DomainEvent) -> None:
        db.info.setdefault(self._key, []).append(domain_event)

    def pending(self, db: Session) -> list[DomainEvent]:
        return list(db.info.get(self._key, []))

    def publish(self, domain_event: DomainEvent) -> None:
        for handler in self._handlers:
            try:
                handler(domain_event)
            except Exception:
                logger.exception(
                    "domain_event_handler_failed",
                    extra={"event": domain_event.name, "booking_id": domain_event.booking_id},
                )

    def _on_commit(self, session: Session) -> None:
        for domain_event in session.info.pop(self._key, []):
            self.publish(domain_event)

    def _on_rollback(self, session: Session) -> None:
        dropped = session.info.pop(self._key, [])
        if dropped:
            logger.info("domain_events_dropped", extra={"event": ",".join(e.name for e in dropped)})


event_bus = EventBus()
