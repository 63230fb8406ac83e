"""
Schema bootstrap for local runs and tests. Production schema is managed by
migrations; this only mirrors the declarative models.
"""
from sqlalchemy.engine import Engine

from dailyhire.db.base import Base

# register every table on Base.metadata
from dailyhire.models import (  # noqa: F401
    booking,
    business,
    compliance,
    dispute,
    job,
    notification,
    wallet,
    wallet_transaction,
    worker,
)


def create_all(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)
