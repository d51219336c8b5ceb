"""
Batch entry point: run one analytics task for one tenant.

Usage:
    edumeter-analytics --task ctt|irt|exposure|detect

The tenant, store connection and every tunable come from the environment
(see core.config.Settings). Each invocation opens one session, runs one
task under the (tenant, task) lease, and prints a HEARTBEAT JSON line to
stdout for the scheduler's log monitoring.

Exit codes:
    0 - Success (task ran, or was skipped because a same-type run holds the lock)
    1 - Database error
    2 - Job error or unexpected error
    3 - Configuration/import error
"""

import argparse
import json
import logging
import sys
import time
from typing import Any, Dict, List, Optional

logger = logging.getLogger("edumeter_analytics.worker")

SERVICE_NAME = "edumeter_analytics"
TASK_CHOICES = ("ctt", "irt", "exposure", "detect")

EXIT_OK = 0
EXIT_DATABASE_ERROR = 1
EXIT_JOB_ERROR = 2
EXIT_CONFIG_ERROR = 3


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="edumeter-analytics",
        description="Run one psychometric analytics task for the configured tenant.",
    )
    parser.add_argument("--task", required=True, choices=TASK_CHOICES)
    return parser.parse_args(argv)


def _capture_sentry(error: BaseException) -> None:
    """Capture an exception to Sentry if configured."""
    try:
        import sentry_sdk

        sentry_sdk.capture_exception(error)
    except Exception:
        pass  # Sentry not configured or import failed


def _init_sentry(settings) -> None:
    if not settings.SENTRY_DSN:
        return
    try:
        import sentry_sdk

        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENV,
            release=settings.APP_VERSION,
            send_default_pii=False,
        )
    except Exception as exc:
        logger.warning("Sentry initialization failed (non-fatal): %s", exc)


def _emit_heartbeat(task: str, status: str, **fields: Any) -> None:
    heartbeat: Dict[str, Any] = {
        "type": "HEARTBEAT",
        "service": SERVICE_NAME,
        "task": task,
        "status": status,
    }
    heartbeat.update(fields)
    print(json.dumps(heartbeat, default=str), flush=True)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    task = args.task

    # Defer imports so config/import failures produce exit code 3
    try:
        from sqlalchemy.exc import SQLAlchemyError

        from edumeter_analytics.core.config import settings
        from edumeter_analytics.core.ctt import run_ctt
        from edumeter_analytics.core.datetime_utils import utc_now
        from edumeter_analytics.core.detection import run_detection
        from edumeter_analytics.core.errors import (
            AnalyticsError,
            ConfigurationError,
            DatabaseOperationError,
            JobLockedError,
        )
        from edumeter_analytics.core.exposure import run_exposure
        from edumeter_analytics.core.irt import run_irt
        from edumeter_analytics.core.job_lock import job_lock
        from edumeter_analytics.core.logging_config import job_context, setup_logging
        from edumeter_analytics.domain_types import TASK_RUN_TYPES
        from edumeter_analytics.models.base import get_session_factory

        setup_logging()
        _init_sentry(settings)
    except Exception as exc:
        logger.error("Failed to import required modules: %s", exc)
        return EXIT_CONFIG_ERROR

    jobs = {
        "ctt": run_ctt,
        "irt": run_irt,
        "exposure": run_exposure,
        "detect": run_detection,
    }

    # Configuration errors abort before any session, lock or run exists
    try:
        if not settings.DATABASE_URL:
            raise ConfigurationError("DATABASE_URL is not set")
        if not settings.TENANT_ID:
            raise ConfigurationError("TENANT_ID is not set")
        config = settings.analytics_config()
    except (ConfigurationError, ValueError) as exc:
        logger.error("Invalid configuration: %s", exc)
        _capture_sentry(exc)
        _emit_heartbeat(task, "failed", reason="configuration")
        return EXIT_CONFIG_ERROR

    tenant_id = settings.TENANT_ID
    run_type = TASK_RUN_TYPES[task]

    try:
        db = get_session_factory()()
    except Exception as exc:
        logger.error("Failed to create database session: %s", exc)
        _capture_sentry(exc)
        return EXIT_DATABASE_ERROR

    started = time.monotonic()
    try:
        with job_context(tenant_id, task):
            logger.info(
                "Starting %s task (window_days=%d)", task, config.window_days
            )
            try:
                if settings.ANALYTICS_LOCK_ENABLED:
                    with job_lock(
                        db, tenant_id, run_type, settings.ANALYTICS_LOCK_MINUTES
                    ):
                        summary = jobs[task](db, tenant_id, config)
                else:
                    summary = jobs[task](db, tenant_id, config)
            except JobLockedError as exc:
                logger.info("Skipping %s task: %s", task, exc)
                _emit_heartbeat(
                    task,
                    "skipped",
                    reason="locked",
                    evaluated_at=utc_now().isoformat(),
                )
                return EXIT_OK

        duration = time.monotonic() - started
        logger.info(
            "%s task complete in %.1fs",
            task,
            duration,
            extra={"duration_seconds": round(duration, 3)},
        )
        _emit_heartbeat(
            task,
            "completed",
            duration_seconds=round(duration, 1),
            completed_at=utc_now().isoformat(),
            **summary,
        )
        return EXIT_OK

    except (DatabaseOperationError, SQLAlchemyError) as exc:
        logger.error("Database error during %s task: %s", task, exc)
        _capture_sentry(exc)
        _emit_heartbeat(task, "failed", reason="database")
        return EXIT_DATABASE_ERROR
    except ConfigurationError as exc:
        logger.error("Invalid configuration for %s task: %s", task, exc)
        _capture_sentry(exc)
        _emit_heartbeat(task, "failed", reason="configuration")
        return EXIT_CONFIG_ERROR
    except AnalyticsError as exc:
        logger.error("%s task failed: %s", task, exc)
        _capture_sentry(exc)
        _emit_heartbeat(task, "failed", reason="job")
        return EXIT_JOB_ERROR
    except Exception as exc:
        logger.exception("Unexpected error during %s task: %s", task, exc)
        _capture_sentry(exc)
        _emit_heartbeat(task, "failed", reason="unexpected")
        return EXIT_JOB_ERROR
    finally:
        db.close()


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
