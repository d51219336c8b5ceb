"""
Database error handling utilities.

Centralizes the pattern used by every batch job around store access:
1. Rolling back the session on error
2. Logging the error with the operation name
3. Raising DatabaseOperationError so the worker exits with the database code

Usage:
    from edumeter_analytics.core.db_error_handling import handle_db_error

    with handle_db_error(db, "insert CTT stats"):
        db.add_all(rows)
        db.commit()
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from edumeter_analytics.core.errors import DatabaseOperationError

logger = logging.getLogger(__name__)


@contextmanager
def handle_db_error(
    db: Session,
    operation_name: str,
    context: Optional[Dict[str, Any]] = None,
) -> Generator[None, None, None]:
    """Context manager wrapping SQLAlchemy failures in DatabaseOperationError.

    Rows already committed before the failure stay in place: history is
    append-only, so a retried run adds a fresh complete set under a new
    analysis_run_id instead of repairing the partial one.

    Args:
        db: The session to roll back on error.
        operation_name: Human-readable name used in logs and the error message
            (e.g. "fetch responses", "insert IRT parameters").
        context: Extra key/values attached to the raised error.
    """
    try:
        yield
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error during '{operation_name}': {e}")
        raise DatabaseOperationError(operation_name, e, context=context) from e
