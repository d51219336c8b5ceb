"""
Run ledger: one AnalysisRun per batch invocation, plus history reads.

The run row is committed before any stat or detection row references it.
History tables are append-only; corrections arrive as a newer run's rows.

Fingerprints are intentionally coarse (row volume + window start, not row
content) so two runs over an unchanged window are recognisable as having
seen the same snapshot without hashing every response.
"""

import hashlib
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from edumeter_analytics.core.datetime_utils import utc_now
from edumeter_analytics.core.db_error_handling import handle_db_error
from edumeter_analytics.core.logging_config import analysis_run_id_context
from edumeter_analytics.domain_types import DetectionStatus, RunType
from edumeter_analytics.models.base import Base
from edumeter_analytics.models.models import (
    AnalysisRun,
    ItemCttStat,
    ItemDetectionResult,
    ItemExposureStat,
    ItemIrtParam,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


def hash_payload(payload: str) -> str:
    """SHA-256 hex digest of a UTF-8 string."""
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def dataset_fingerprint(row_count: int, since: datetime) -> str:
    """Fingerprint of an estimator's input: "{row_count}:{since_iso}"."""
    return hash_payload(f"{row_count}:{since.isoformat()}")


def detection_fingerprint(
    ctt_rows: int, irt_rows: int, exposure_rows: int, since: datetime
) -> str:
    """Fingerprint of the ranked history a detection run reads."""
    return hash_payload(f"{ctt_rows}:{irt_rows}:{exposure_rows}:{since.isoformat()}")


def create_run(
    db: Session,
    tenant_id: str,
    run_type: RunType,
    params: Dict[str, Any],
    data_range: Dict[str, Any],
    dataset_hash: str,
    software_version: Optional[str] = None,
) -> AnalysisRun:
    """
    Insert and commit a new AnalysisRun.

    The run id is bound to the logging context so every later record in
    this job carries it.

    Args:
        software_version: Build that produced the run, stored for audit.
            None when it is not known.

    Raises:
        DatabaseOperationError: If the insert fails.
    """
    run = AnalysisRun(
        tenant_id=tenant_id,
        run_type=run_type,
        params=params,
        data_range=data_range,
        dataset_hash=dataset_hash,
        software_version=software_version,
        created_at=utc_now(),
    )
    with handle_db_error(db, "create analysis run", context={"run_type": run_type.value}):
        db.add(run)
        db.commit()
        db.refresh(run)

    analysis_run_id_context.set(run.id)
    logger.info(
        f"Opened {run_type.value} run {run.id} (dataset_hash={dataset_hash[:12]})"
    )
    return run


def persist_rows(
    db: Session,
    rows: Sequence[Base],
    operation_name: str,
    batch_size: int = 500,
) -> int:
    """
    Insert result rows, committing every `batch_size` rows.

    A failure part-way leaves earlier batches committed; the invocation
    still fails and a rerun writes a complete set under a new run id.

    Returns:
        Number of rows written.
    """
    written = 0
    with handle_db_error(db, operation_name, context={"rows": len(rows)}):
        for start in range(0, len(rows), batch_size):
            batch = rows[start : start + batch_size]
            db.add_all(batch)
            db.commit()
            written += len(batch)
    return written


# =============================================================================
# History reads (newest first, tenant scoped)
# =============================================================================


def list_runs(
    db: Session, tenant_id: str, run_type: Optional[RunType] = None
) -> List[AnalysisRun]:
    """All runs for the tenant, optionally filtered by type, newest first."""
    stmt = select(AnalysisRun).where(AnalysisRun.tenant_id == tenant_id)
    if run_type is not None:
        stmt = stmt.where(AnalysisRun.run_type == run_type)
    stmt = stmt.order_by(AnalysisRun.created_at.desc())
    return list(db.scalars(stmt))


def _list_item_history(
    db: Session, model: Type[ModelT], tenant_id: str, item_id: Optional[str]
) -> List[ModelT]:
    stmt = select(model).where(model.tenant_id == tenant_id)
    if item_id is not None:
        stmt = stmt.where(model.item_id == item_id)
    stmt = stmt.order_by(model.created_at.desc())
    return list(db.scalars(stmt))


def list_ctt_stats(
    db: Session, tenant_id: str, item_id: Optional[str] = None
) -> List[ItemCttStat]:
    return _list_item_history(db, ItemCttStat, tenant_id, item_id)


def list_irt_params(
    db: Session, tenant_id: str, item_id: Optional[str] = None
) -> List[ItemIrtParam]:
    return _list_item_history(db, ItemIrtParam, tenant_id, item_id)


def list_exposure_stats(
    db: Session, tenant_id: str, item_id: Optional[str] = None
) -> List[ItemExposureStat]:
    return _list_item_history(db, ItemExposureStat, tenant_id, item_id)


def list_detections(
    db: Session, tenant_id: str, status: Optional[DetectionStatus] = None
) -> List[ItemDetectionResult]:
    """Detection results for the tenant, optionally filtered by status, newest first."""
    stmt = select(ItemDetectionResult).where(ItemDetectionResult.tenant_id == tenant_id)
    if status is not None:
        stmt = stmt.where(ItemDetectionResult.status == status)
    stmt = stmt.order_by(ItemDetectionResult.created_at.desc())
    return list(db.scalars(stmt))
