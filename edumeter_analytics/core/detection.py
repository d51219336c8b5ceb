"""
Rule-based detection over item history and in-window subgroup outcomes.

Rules (every comparison is inclusive, >=):
- IPD p_diff: |p_latest - p_previous| of the two newest CTT rows per item
- IPD a_diff / b_diff: same comparison on the two newest IRT rows, each
  raised as its own result
- EXPOSURE count: newest exposure_count per item (single snapshot)
- TIME mean_time_ms: newest mean_time_ms per item, ignored when null
- DIF p_diff: max - min proportion correct across subgroups with at least
  dif_min_responses responses; needs two or more such subgroups

Items with fewer than two history rows are skipped by the IPD rules.
Every result is inserted as "flagged"; this module never resolves
anything on its own. resolve_detection() is the single transition the
reviewer tooling may apply.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, TypedDict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from edumeter_analytics.core.config import AnalyticsConfig, DetectionThresholds
from edumeter_analytics.core.datetime_utils import utc_now, window_start
from edumeter_analytics.core.db_error_handling import handle_db_error
from edumeter_analytics.core.errors import AnalyticsError, InvalidStatusTransition
from edumeter_analytics.core.response_store import GroupTally, aggregate_subgroup_tallies
from edumeter_analytics.core.run_ledger import create_run, detection_fingerprint, persist_rows
from edumeter_analytics.core.statistics import proportion
from edumeter_analytics.domain_types import DetectionStatus, DetectionType, RunType
from edumeter_analytics.models.models import (
    ItemCttStat,
    ItemDetectionResult,
    ItemExposureStat,
    ItemIrtParam,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Flag:
    """A rule hit, before it is tied to a run and persisted."""

    item_id: str
    detection_type: DetectionType
    metric_name: str
    metric_value: float
    threshold: float
    details: Dict[str, Any]


class DetectionSummary(TypedDict):
    """Flags raised by one detection run, per rule family."""

    analysis_run_id: str
    ipd_count: int  # p_diff flags from CTT history
    irt_ipd_count: int  # a_diff and b_diff flags from IRT history
    dif_count: int
    exposure_count: int
    time_count: int


# =============================================================================
# History reads
# =============================================================================


def _ranked_history(db: Session, model, tenant_id: str, columns, depth: int):
    """Newest `depth` rows per item for `model`, as (item_id, rank, *columns)."""
    rank = (
        func.row_number()
        .over(partition_by=model.item_id, order_by=model.created_at.desc())
        .label("rn")
    )
    ranked = (
        select(model.item_id, rank, *columns)
        .where(model.tenant_id == tenant_id)
        .subquery()
    )
    stmt = (
        select(ranked)
        .where(ranked.c.rn <= depth)
        .order_by(ranked.c.item_id, ranked.c.rn)
    )
    return list(db.execute(stmt))


def _group_pairs(rows) -> Dict[str, List[Any]]:
    grouped: Dict[str, List[Any]] = {}
    for row in rows:
        grouped.setdefault(row.item_id, []).append(row)
    return grouped


def latest_two_ctt(db: Session, tenant_id: str) -> Dict[str, List[Any]]:
    """{item_id: [latest, previous?]} of CTT p_value rows."""
    return _group_pairs(
        _ranked_history(db, ItemCttStat, tenant_id, [ItemCttStat.p_value], depth=2)
    )


def latest_two_irt(db: Session, tenant_id: str) -> Dict[str, List[Any]]:
    """{item_id: [latest, previous?]} of IRT (a_param, b_param) rows."""
    return _group_pairs(
        _ranked_history(
            db,
            ItemIrtParam,
            tenant_id,
            [ItemIrtParam.a_param, ItemIrtParam.b_param],
            depth=2,
        )
    )


def latest_exposure(db: Session, tenant_id: str) -> List[Any]:
    """Newest exposure row per item."""
    return _ranked_history(
        db,
        ItemExposureStat,
        tenant_id,
        [ItemExposureStat.exposure_count, ItemExposureStat.mean_time_ms],
        depth=1,
    )


# =============================================================================
# Rules
# =============================================================================


def _drift_flag(
    item_id: str, metric_name: str, latest: float, previous: float, threshold: float
) -> Optional[Flag]:
    diff = abs(latest - previous)
    if diff < threshold:
        return None
    return Flag(
        item_id=item_id,
        detection_type=DetectionType.IPD,
        metric_name=metric_name,
        metric_value=diff,
        threshold=threshold,
        details={"latest": latest, "previous": previous},
    )


def detect_ctt_drift(
    history: Dict[str, List[Any]], thresholds: DetectionThresholds
) -> List[Flag]:
    """IPD on proportion correct between the two newest CTT runs."""
    flags = []
    for item_id, rows in history.items():
        if len(rows) < 2:
            continue
        latest, previous = rows[0], rows[1]
        flag = _drift_flag(
            item_id, "p_diff", latest.p_value, previous.p_value, thresholds.ipd_threshold
        )
        if flag:
            flags.append(flag)
    return flags


def detect_irt_drift(
    history: Dict[str, List[Any]], thresholds: DetectionThresholds
) -> List[Flag]:
    """IPD on discrimination and difficulty between the two newest IRT runs."""
    flags = []
    for item_id, rows in history.items():
        if len(rows) < 2:
            continue
        latest, previous = rows[0], rows[1]
        for flag in (
            _drift_flag(
                item_id, "a_diff", latest.a_param, previous.a_param, thresholds.ipd_a_threshold
            ),
            _drift_flag(
                item_id, "b_diff", latest.b_param, previous.b_param, thresholds.ipd_b_threshold
            ),
        ):
            if flag:
                flags.append(flag)
    return flags


def detect_exposure_and_time(
    latest_rows: List[Any], thresholds: DetectionThresholds
) -> Tuple[List[Flag], List[Flag]]:
    """Single-snapshot rules on the newest exposure row per item."""
    exposure_flags: List[Flag] = []
    time_flags: List[Flag] = []
    for row in latest_rows:
        if row.exposure_count >= thresholds.exposure_threshold:
            exposure_flags.append(
                Flag(
                    item_id=row.item_id,
                    detection_type=DetectionType.EXPOSURE,
                    metric_name="count",
                    metric_value=float(row.exposure_count),
                    threshold=float(thresholds.exposure_threshold),
                    details={},
                )
            )
        if row.mean_time_ms is not None and row.mean_time_ms >= thresholds.time_threshold_ms:
            time_flags.append(
                Flag(
                    item_id=row.item_id,
                    detection_type=DetectionType.TIME,
                    metric_name="mean_time_ms",
                    metric_value=row.mean_time_ms,
                    threshold=thresholds.time_threshold_ms,
                    details={},
                )
            )
    return exposure_flags, time_flags


def detect_dif(
    tallies: Dict[str, Dict[str, GroupTally]], thresholds: DetectionThresholds
) -> List[Flag]:
    """
    Subgroup disparity in proportion correct.

    Only subgroups with at least dif_min_responses responses are compared.
    With fewer than two such subgroups the item is skipped, however large
    the raw disparity.
    """
    flags = []
    for item_id, groups in tallies.items():
        eligible = {
            label: tally
            for label, tally in groups.items()
            if tally.total >= thresholds.dif_min_responses
        }
        if len(eligible) < 2:
            continue

        p_values = [proportion(t.correct, t.total) for t in eligible.values()]
        diff = max(p_values) - min(p_values)
        if diff < thresholds.dif_threshold:
            continue

        flags.append(
            Flag(
                item_id=item_id,
                detection_type=DetectionType.DIF,
                metric_name="p_diff",
                metric_value=diff,
                threshold=thresholds.dif_threshold,
                details={
                    "groupStats": {
                        label: {"total": t.total, "correct": t.correct}
                        for label, t in eligible.items()
                    }
                },
            )
        )
    return flags


# =============================================================================
# Job
# =============================================================================


def run_detection(
    db: Session,
    tenant_id: str,
    config: AnalyticsConfig,
    batch_size: Optional[int] = None,
) -> DetectionSummary:
    """
    Evaluate every rule for the tenant and persist one result per flag.

    The run is fingerprinted by the number of ranked history rows read and
    the window start. All thresholds plus the window length are recorded
    on the run's params.

    Raises:
        DatabaseOperationError: If a read or write fails.
    """
    thresholds = config.detection
    since = window_start(config.window_days)

    with handle_db_error(db, "read item history for detection"):
        ctt_history = latest_two_ctt(db, tenant_id)
        irt_history = latest_two_irt(db, tenant_id)
        exposure_rows = latest_exposure(db, tenant_id)

    params = thresholds.to_params()
    params["windowDays"] = config.window_days
    run = create_run(
        db,
        tenant_id,
        RunType.DETECTION,
        params=params,
        data_range={"since": since.isoformat()},
        dataset_hash=detection_fingerprint(
            sum(len(rows) for rows in ctt_history.values()),
            sum(len(rows) for rows in irt_history.values()),
            len(exposure_rows),
            since,
        ),
        software_version=config.software_version,
    )

    ctt_ipd_flags = detect_ctt_drift(ctt_history, thresholds)
    irt_ipd_flags = detect_irt_drift(irt_history, thresholds)
    exposure_flags, time_flags = detect_exposure_and_time(exposure_rows, thresholds)

    with handle_db_error(db, "aggregate subgroup tallies"):
        tallies = aggregate_subgroup_tallies(db, tenant_id, since)
    dif_flags = detect_dif(tallies, thresholds)

    flags = ctt_ipd_flags + irt_ipd_flags + exposure_flags + time_flags + dif_flags
    rows = [
        ItemDetectionResult(
            tenant_id=tenant_id,
            item_id=flag.item_id,
            detection_type=flag.detection_type,
            metric_name=flag.metric_name,
            metric_value=flag.metric_value,
            threshold=flag.threshold,
            status=DetectionStatus.FLAGGED,
            details=flag.details,
            analysis_run_id=run.id,
            created_at=run.created_at,
        )
        for flag in flags
    ]
    persist_rows(
        db,
        rows,
        "insert detection results",
        batch_size=batch_size or config.commit_batch_size,
    )

    summary: DetectionSummary = {
        "analysis_run_id": run.id,
        "ipd_count": len(ctt_ipd_flags),
        "irt_ipd_count": len(irt_ipd_flags),
        "dif_count": len(dif_flags),
        "exposure_count": len(exposure_flags),
        "time_count": len(time_flags),
    }
    logger.info(
        f"Detection run {run.id} complete: {summary['ipd_count']} IPD, "
        f"{summary['irt_ipd_count']} IRT IPD, "
        f"{summary['dif_count']} DIF, {summary['exposure_count']} exposure, "
        f"{summary['time_count']} time flags"
    )
    return summary


def resolve_detection(
    db: Session, tenant_id: str, detection_id: str
) -> ItemDetectionResult:
    """
    Move a detection result from flagged to resolved.

    Raises:
        AnalyticsError: If no result with this id exists for the tenant.
        InvalidStatusTransition: If the result is not currently flagged.
        DatabaseOperationError: If the update fails.
    """
    result = db.scalars(
        select(ItemDetectionResult).where(
            ItemDetectionResult.id == detection_id,
            ItemDetectionResult.tenant_id == tenant_id,
        )
    ).first()
    if result is None:
        raise AnalyticsError(
            "Detection result not found", context={"detection_id": detection_id}
        )
    if result.status != DetectionStatus.FLAGGED:
        raise InvalidStatusTransition(
            f"Cannot resolve a detection in status {result.status.value}",
            context={"detection_id": detection_id},
        )

    with handle_db_error(db, "resolve detection", context={"detection_id": detection_id}):
        result.status = DetectionStatus.RESOLVED
        result.resolved_at = utc_now()
        db.commit()
        db.refresh(result)

    logger.info(f"Resolved detection {detection_id} for item {result.item_id}")
    return result
