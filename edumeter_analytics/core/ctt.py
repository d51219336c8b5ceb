"""
Classical Test Theory (CTT) item statistics.

Metrics calculated per item over the analysis window:
1. n: number of response rows for the item
2. p-value (difficulty): correct / n
3. Point-biserial discrimination against each session's total raw score
4. Mean and sample SD of strictly positive response times

Point-biserial:
    r_pb = (M1 - M0) * sqrt(p * q) / SD_total
Where:
    M1, M0   = mean total score of rows answered correctly / incorrectly
    SD_total = sample SD of total scores across all rows for the item
    p        = proportion correct, q = 1 - p
r_pb is 0 when SD_total is 0. An empty group contributes a mean of 0, which
only happens when p or q is 0 and the product term is already 0.

"discrimination" is reported equal to the point-biserial value.
"""

import logging
import math
from typing import Dict, List, Optional, TypedDict

from sqlalchemy.orm import Session

from edumeter_analytics.core.config import AnalyticsConfig
from edumeter_analytics.core.datetime_utils import window_start
from edumeter_analytics.core.db_error_handling import handle_db_error
from edumeter_analytics.core.response_store import ResponseRecord, fetch_responses
from edumeter_analytics.core.run_ledger import (
    create_run,
    dataset_fingerprint,
    persist_rows,
)
from edumeter_analytics.core.session_scoring import raw_scores
from edumeter_analytics.core.statistics import (
    mean,
    positive_times,
    proportion,
    sample_stdev,
)
from edumeter_analytics.domain_types import RunType
from edumeter_analytics.models.models import ItemCttStat

logger = logging.getLogger(__name__)


class ItemCttResult(TypedDict):
    """CTT statistics for a single item."""

    n: int
    p_value: float
    point_biserial: float
    mean_time_ms: Optional[float]
    std_time_ms: Optional[float]


class JobSummary(TypedDict):
    """Summary returned by the per-item estimator jobs."""

    analysis_run_id: str
    item_count: int


def calculate_point_biserial(
    item_correct: List[bool], total_scores: List[int]
) -> float:
    """
    Point-biserial correlation between one item and the session total score.

    Args:
        item_correct: Correctness of each response row for this item.
        total_scores: Raw score of the session behind each row (same order).

    Returns:
        r_pb, or 0.0 when the total scores have no variance.
    """
    if len(item_correct) != len(total_scores):
        raise ValueError("item_correct and total_scores must have equal length")

    sd_total = sample_stdev(total_scores)
    if sd_total == 0:
        return 0.0

    correct_totals = [t for ok, t in zip(item_correct, total_scores) if ok]
    incorrect_totals = [t for ok, t in zip(item_correct, total_scores) if not ok]

    p = proportion(len(correct_totals), len(item_correct))
    q = 1 - p
    return (mean(correct_totals) - mean(incorrect_totals)) * math.sqrt(p * q) / sd_total


def compute_item_statistics(
    responses: List[ResponseRecord],
) -> Dict[str, ItemCttResult]:
    """
    Compute CTT statistics for every item present in `responses`.

    Items are independent of one another; only the session totals are shared.
    Null correctness counts toward n but not toward the correct count.

    Returns:
        {item_id: ItemCttResult}, in first-appearance order. Items with no
        rows never appear, so there is nothing to skip downstream.
    """
    session_totals = raw_scores(responses)

    grouped: Dict[str, List[ResponseRecord]] = {}
    for r in responses:
        grouped.setdefault(r.item_id, []).append(r)

    results: Dict[str, ItemCttResult] = {}
    for item_id, rows in grouped.items():
        n = len(rows)
        correct_flags = [bool(r.is_correct) for r in rows]
        totals = [session_totals.get(r.session_id, 0) for r in rows]
        times = positive_times(r.response_time_ms for r in rows)

        results[item_id] = {
            "n": n,
            "p_value": proportion(sum(correct_flags), n),
            "point_biserial": calculate_point_biserial(correct_flags, totals),
            "mean_time_ms": mean(times) if times else None,
            "std_time_ms": sample_stdev(times) if times else None,
        }

    return results


def run_ctt(
    db: Session,
    tenant_id: str,
    config: AnalyticsConfig,
    batch_size: Optional[int] = None,
) -> JobSummary:
    """
    Run a CTT analysis over the configured window and persist one row per item.

    Steps:
        1. Fetch in-window responses
        2. Open an AnalysisRun fingerprinted by (row count, window start)
        3. Compute per-item statistics
        4. Insert one ItemCttStat per item

    Raises:
        DatabaseOperationError: If a read or write fails.
    """
    since = window_start(config.window_days)

    with handle_db_error(db, "fetch responses for CTT"):
        responses = fetch_responses(db, tenant_id, since)

    run = create_run(
        db,
        tenant_id,
        RunType.CTT,
        params={"windowDays": config.window_days},
        data_range={"since": since.isoformat()},
        dataset_hash=dataset_fingerprint(len(responses), since),
        software_version=config.software_version,
    )

    stats = compute_item_statistics(responses)
    rows = [
        ItemCttStat(
            tenant_id=tenant_id,
            item_id=item_id,
            analysis_run_id=run.id,
            n=s["n"],
            p_value=s["p_value"],
            discrimination=s["point_biserial"],
            point_biserial=s["point_biserial"],
            mean_time_ms=s["mean_time_ms"],
            std_time_ms=s["std_time_ms"],
            created_at=run.created_at,
        )
        for item_id, s in stats.items()
    ]
    persist_rows(
        db,
        rows,
        "insert CTT stats",
        batch_size=batch_size or config.commit_batch_size,
    )

    logger.info(
        f"CTT run {run.id} complete: {len(rows)} items from {len(responses)} responses"
    )
    return {"analysis_run_id": run.id, "item_count": len(rows)}
