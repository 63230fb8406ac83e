from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String

from dailyhire.db.base import Base


class Job(Base):
    __tablename__ = "jobs"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    business_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    wage_amount = Column(Integer, nullable=False)           # rupiah, no minor unit
    wage_period = Column(String, nullable=False, default="daily")  # daily / fixed
    status = Column(String, nullable=False, default="open")  # open / closed / cancelled
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
