"""Lease lock serialising same-type runs for one tenant."""

import logging
import os
import socket
from contextlib import contextmanager
from datetime import timedelta
from typing import Iterator, Optional

from sqlalchemy import insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from edumeter_analytics.core.datetime_utils import utc_now
from edumeter_analytics.core.db_error_handling import handle_db_error
from edumeter_analytics.core.errors import JobLockedError
from edumeter_analytics.domain_types import RunType
from edumeter_analytics.models.models import AnalysisJobLock

logger = logging.getLogger(__name__)


def lock_owner() -> str:
    """Identify this process as the lock holder."""
    return f"{socket.gethostname()}-{os.getpid()}"


def acquire_job_lock(
    db: Session,
    tenant_id: str,
    run_type: RunType,
    lock_duration_minutes: int = 60,
    owner: Optional[str] = None,
) -> bool:
    """
    Acquire the (tenant, run type) lease.

    Succeeds when no lease row exists yet or the existing lease has expired.
    A crashed holder therefore blocks same-type runs for at most
    lock_duration_minutes.

    Returns:
        True if the lease is now held by `owner`, False if another holder
        has an unexpired lease.
    """
    now = utc_now()
    locked_until = now + timedelta(minutes=lock_duration_minutes)
    owner = owner or lock_owner()
    job_key = f"{tenant_id}:{run_type.value}"

    with handle_db_error(db, "acquire job lock", context={"job": job_key}):
        try:
            db.execute(
                insert(AnalysisJobLock).values(
                    tenant_id=tenant_id,
                    run_type=run_type,
                    locked_until=locked_until,
                    locked_by=owner,
                )
            )
            db.commit()
            logger.info(f"Acquired lock for job: {job_key}")
            return True
        except IntegrityError:
            db.rollback()

        # Row exists: take it over only if the lease has expired
        result = db.execute(
            update(AnalysisJobLock)
            .where(
                AnalysisJobLock.tenant_id == tenant_id,
                AnalysisJobLock.run_type == run_type,
                AnalysisJobLock.locked_until < now,
            )
            .values(locked_until=locked_until, locked_by=owner)
            .execution_options(synchronize_session=False)
        )
        db.commit()

    if result.rowcount == 1:
        logger.info(f"Acquired expired lock for job: {job_key}")
        return True

    logger.info(f"Failed to acquire lock for job: {job_key} (already locked)")
    return False


def release_job_lock(
    db: Session,
    tenant_id: str,
    run_type: RunType,
    owner: Optional[str] = None,
) -> None:
    """Expire the lease immediately if `owner` still holds it."""
    owner = owner or lock_owner()
    with handle_db_error(db, "release job lock"):
        db.execute(
            update(AnalysisJobLock)
            .where(
                AnalysisJobLock.tenant_id == tenant_id,
                AnalysisJobLock.run_type == run_type,
                AnalysisJobLock.locked_by == owner,
            )
            .values(locked_until=utc_now() - timedelta(minutes=1))
            .execution_options(synchronize_session=False)
        )
        db.commit()
    logger.info(f"Released lock for job: {tenant_id}:{run_type.value}")


@contextmanager
def job_lock(
    db: Session,
    tenant_id: str,
    run_type: RunType,
    lock_duration_minutes: int = 60,
) -> Iterator[None]:
    """
    Hold the lease for the duration of the block.

    Raises:
        JobLockedError: If another holder has an unexpired lease.
    """
    owner = lock_owner()
    if not acquire_job_lock(db, tenant_id, run_type, lock_duration_minutes, owner):
        raise JobLockedError(
            f"A {run_type.value} run is already in progress",
            context={"tenant_id": tenant_id},
        )
    try:
        yield
    finally:
        release_job_lock(db, tenant_id, run_type, owner)
