"""
Dialect-aware INSERT ... ON CONFLICT DO NOTHING.
Used for get-or-create rows whose uniqueness is enforced by the database
(wallet per owner, compliance counter per month, worked day per date).
"""
from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def insert_ignore(db: Session, model, values: dict[str, Any], conflict_columns: list[str]) -> bool:
    """Insert a row unless it conflicts on `conflict_columns`. Returns True if inserted."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model.__table__).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model.__table__).values(**values)
    else:
        raise NotImplementedError(f"insert_ignore is not supported for dialect {dialect!r}")
    stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)
    result = db.execute(stmt)
    return (result.rowcount or 0) > 0
