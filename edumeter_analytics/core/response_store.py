"""
Read-only access to the response store.

Every query is parameterised by tenant and by the inclusive window start;
nothing here writes. Rows come back in a fixed order (answered_at, id) so
estimators that accumulate floating-point sums are reproducible run to run.

Two aggregations are pushed down to SQL so exposure and DIF never need the
full response set in memory:
    aggregate_exposure - per-item count and mean positive response time
    aggregate_subgroup_tallies - per-item, per-subgroup totals and corrects
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from edumeter_analytics.models.models import ItemResponse, Student, TestSession

logger = logging.getLogger(__name__)

UNKNOWN_SUBGROUP = "unknown"


@dataclass(frozen=True)
class ResponseRecord:
    """One response row as seen by the estimators."""

    item_id: str
    session_id: str
    is_correct: Optional[bool]
    response_time_ms: Optional[int]
    answered_at: datetime
    subgroup_label: Optional[str] = None


@dataclass(frozen=True)
class ExposureAggregate:
    """Per-item usage within a window."""

    item_id: str
    exposure_count: int
    mean_time_ms: Optional[float]


@dataclass(frozen=True)
class GroupTally:
    """Responses and correct responses for one subgroup on one item."""

    total: int
    correct: int


def _subgroup_label():
    return func.coalesce(
        Student.attributes["group"].as_string(), UNKNOWN_SUBGROUP
    ).label("subgroup_label")


def fetch_responses(
    db: Session, tenant_id: str, since: datetime
) -> List[ResponseRecord]:
    """
    Return every response answered at or after `since` for the tenant.

    Sessions and examinees are outer-joined, so responses without a known
    examinee still appear with subgroup_label "unknown".
    """
    stmt = (
        select(
            ItemResponse.item_id,
            ItemResponse.session_id,
            ItemResponse.is_correct,
            ItemResponse.response_time_ms,
            ItemResponse.answered_at,
            _subgroup_label(),
        )
        .select_from(ItemResponse)
        .outerjoin(TestSession, TestSession.id == ItemResponse.session_id)
        .outerjoin(Student, Student.id == TestSession.student_id)
        .where(
            ItemResponse.tenant_id == tenant_id,
            ItemResponse.answered_at >= since,
        )
        .order_by(ItemResponse.answered_at, ItemResponse.id)
    )

    records = [
        ResponseRecord(
            item_id=row.item_id,
            session_id=row.session_id,
            is_correct=row.is_correct,
            response_time_ms=row.response_time_ms,
            answered_at=row.answered_at,
            subgroup_label=row.subgroup_label,
        )
        for row in db.execute(stmt)
    ]
    logger.debug(f"Fetched {len(records)} responses since {since.isoformat()}")
    return records


def count_responses(db: Session, tenant_id: str, since: datetime) -> int:
    """Number of in-window responses for the tenant."""
    stmt = select(func.count(ItemResponse.id)).where(
        ItemResponse.tenant_id == tenant_id,
        ItemResponse.answered_at >= since,
    )
    return db.execute(stmt).scalar() or 0


def aggregate_exposure(
    db: Session, tenant_id: str, since: datetime
) -> List[ExposureAggregate]:
    """Per-item response count and mean of strictly positive response times."""
    positive_time = case(
        (ItemResponse.response_time_ms > 0, ItemResponse.response_time_ms),
        else_=None,
    )
    stmt = (
        select(
            ItemResponse.item_id,
            func.count(ItemResponse.id).label("exposure_count"),
            func.avg(positive_time).label("mean_time_ms"),
        )
        .where(
            ItemResponse.tenant_id == tenant_id,
            ItemResponse.answered_at >= since,
        )
        .group_by(ItemResponse.item_id)
        .order_by(ItemResponse.item_id)
    )

    return [
        ExposureAggregate(
            item_id=row.item_id,
            exposure_count=int(row.exposure_count),
            # PostgreSQL returns Decimal for avg() over integers
            mean_time_ms=float(row.mean_time_ms) if row.mean_time_ms is not None else None,
        )
        for row in db.execute(stmt)
    ]


def aggregate_subgroup_tallies(
    db: Session, tenant_id: str, since: datetime
) -> Dict[str, Dict[str, GroupTally]]:
    """
    Per-item, per-subgroup response tallies.

    Returns:
        {item_id: {subgroup_label: GroupTally(total, correct)}}
    """
    label = _subgroup_label()
    correct = case((ItemResponse.is_correct.is_(True), 1), else_=0)
    stmt = (
        select(
            ItemResponse.item_id,
            label,
            func.count(ItemResponse.id).label("total"),
            func.sum(correct).label("correct"),
        )
        .select_from(ItemResponse)
        .outerjoin(TestSession, TestSession.id == ItemResponse.session_id)
        .outerjoin(Student, Student.id == TestSession.student_id)
        .where(
            ItemResponse.tenant_id == tenant_id,
            ItemResponse.answered_at >= since,
        )
        .group_by(ItemResponse.item_id, label)
        .order_by(ItemResponse.item_id, label)
    )

    tallies: Dict[str, Dict[str, GroupTally]] = {}
    for row in db.execute(stmt):
        tallies.setdefault(row.item_id, {})[row.subgroup_label] = GroupTally(
            total=int(row.total), correct=int(row.correct or 0)
        )
    return tallies
