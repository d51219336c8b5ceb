"""
Centralized logging configuration with structured logging support.
"""
import json
import logging
import logging.config
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from edumeter_analytics.core.config import settings

# Context variables for job correlation. Set by the worker for the duration
# of one task so every record emitted by the estimators carries them.
tenant_id_context: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)
task_context: ContextVar[Optional[str]] = ContextVar("task", default=None)
analysis_run_id_context: ContextVar[Optional[str]] = ContextVar(
    "analysis_run_id", default=None
)

_CONTEXT_FIELDS = (
    ("tenant_id", tenant_id_context),
    ("task", task_context),
    ("analysis_run_id", analysis_run_id_context),
)


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for production logging.

    Produces structured log entries with consistent fields for log aggregation.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_entry: Dict[str, Any] = {
            "timestamp": timestamp.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field, var in _CONTEXT_FIELDS:
            value = var.get()
            if value:
                log_entry[field] = value

        # Extra structured fields passed via logger.info(..., extra={...})
        for field in ("item_id", "item_count", "duration_seconds"):
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        # Add source location for error-level logs
        if record.levelno >= logging.ERROR:
            log_entry["source"] = f"{record.pathname}:{record.lineno}"

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging() -> None:
    """
    Configure process-wide logging.

    JSON lines in production (structured for log aggregators), a
    human-readable format everywhere else.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    is_production = settings.ENV == "production"

    logging_config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {
                "()": JSONFormatter,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "json" if is_production else "default",
                "stream": sys.stderr,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
        "loggers": {
            "edumeter_analytics": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            "sqlalchemy.engine": {
                "level": logging.WARNING,
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }

    logging.config.dictConfig(logging_config)


@contextmanager
def job_context(tenant_id: str, task: str) -> Iterator[None]:
    """Bind tenant and task to every log record emitted inside the block."""
    tenant_token = tenant_id_context.set(tenant_id)
    task_token = task_context.set(task)
    run_token = analysis_run_id_context.set(None)
    try:
        yield
    finally:
        analysis_run_id_context.reset(run_token)
        task_context.reset(task_token)
        tenant_id_context.reset(tenant_token)
