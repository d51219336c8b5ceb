"""
Item exposure: how often each item was administered in the window.

Both metrics are aggregated in SQL. mean_time_ms only averages strictly
positive response times and is null when an item has none.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from edumeter_analytics.core.config import AnalyticsConfig
from edumeter_analytics.core.ctt import JobSummary
from edumeter_analytics.core.datetime_utils import window_start
from edumeter_analytics.core.db_error_handling import handle_db_error
from edumeter_analytics.core.response_store import aggregate_exposure, count_responses
from edumeter_analytics.core.run_ledger import (
    create_run,
    dataset_fingerprint,
    persist_rows,
)
from edumeter_analytics.domain_types import RunType
from edumeter_analytics.models.models import ItemExposureStat

logger = logging.getLogger(__name__)


def run_exposure(
    db: Session,
    tenant_id: str,
    config: AnalyticsConfig,
    batch_size: Optional[int] = None,
) -> JobSummary:
    """Record one ItemExposureStat per item answered in the window."""
    since = window_start(config.window_days)

    with handle_db_error(db, "aggregate item exposure"):
        row_count = count_responses(db, tenant_id, since)
        aggregates = aggregate_exposure(db, tenant_id, since)

    run = create_run(
        db,
        tenant_id,
        RunType.EXPOSURE,
        params={"windowDays": config.window_days},
        data_range={"since": since.isoformat()},
        dataset_hash=dataset_fingerprint(row_count, since),
        software_version=config.software_version,
    )

    rows = [
        ItemExposureStat(
            tenant_id=tenant_id,
            item_id=agg.item_id,
            analysis_run_id=run.id,
            exposure_count=agg.exposure_count,
            mean_time_ms=agg.mean_time_ms,
            created_at=run.created_at,
        )
        for agg in aggregates
    ]
    persist_rows(
        db,
        rows,
        "insert exposure stats",
        batch_size=batch_size or config.commit_batch_size,
    )

    logger.info(f"Exposure run {run.id} complete: {len(rows)} items, {row_count} responses")
    return {"analysis_run_id": run.id, "item_count": len(rows)}
