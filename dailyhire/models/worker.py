from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String

from dailyhire.db.base import Base


class Worker(Base):
    """Worker profile as seen by the engine. Owned by the profile/KYC services."""

    __tablename__ = "workers"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=True, index=True)
    full_name = Column(String, nullable=False)
    kyc_status = Column(String, nullable=False, default="pending")  # pending / verified / rejected
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_kyc_verified(self) -> bool:
        return self.kyc_status == "verified"
