"""Custom SQLAlchemy types for cross-database compatibility.

Production runs on PostgreSQL; the test suite runs on SQLite. The types
here pick the best native representation per dialect.
"""

import uuid

from sqlalchemy import JSON, TypeDecorator
from sqlalchemy.dialects.postgresql import JSONB


class JSONDocument(TypeDecorator):
    """
    A JSON document column that works with both PostgreSQL and SQLite.

    - On PostgreSQL: Uses JSONB so reviewers can index and filter on
      run parameters and detection details
    - On SQLite: Uses the generic JSON type (stored as text)

    Usage:
        params: Mapped[dict] = mapped_column(JSONDocument(), nullable=False)
    """

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        """Choose implementation based on database dialect."""
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


def new_id() -> str:
    """Generate a string primary key (UUID4)."""
    return str(uuid.uuid4())
