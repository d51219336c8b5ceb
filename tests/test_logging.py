"""
Tests for structured logging and job context propagation.
"""
import json
import logging
import sys

from edumeter_analytics.core.logging_config import (
    JSONFormatter,
    analysis_run_id_context,
    job_context,
    task_context,
    tenant_id_context,
)


def _record(level=logging.INFO, msg="hello", exc_info=None, **extra):
    record = logging.LogRecord(
        name="edumeter_analytics.core.ctt",
        level=level,
        pathname="/app/edumeter_analytics/core/ctt.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        with job_context("tenant-a", "ctt"):
            entry = json.loads(JSONFormatter().format(_record()))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "edumeter_analytics.core.ctt"
        assert entry["message"] == "hello"
        assert "timestamp" in entry
        assert "source" not in entry

    def test_job_context_fields(self):
        with job_context("tenant-a", "irt"):
            analysis_run_id_context.set("run-123")
            entry = json.loads(JSONFormatter().format(_record()))

        assert entry["tenant_id"] == "tenant-a"
        assert entry["task"] == "irt"
        assert entry["analysis_run_id"] == "run-123"

    def test_structured_extras(self):
        with job_context("tenant-a", "irt"):
            entry = json.loads(
                JSONFormatter().format(_record(item_id="X", duration_seconds=1.5))
            )

        assert entry["item_id"] == "X"
        assert entry["duration_seconds"] == 1.5

    def test_errors_carry_source_and_exception(self):
        try:
            raise ValueError("bad value")
        except ValueError:
            exc_info = sys.exc_info()

        with job_context("tenant-a", "ctt"):
            entry = json.loads(
                JSONFormatter().format(_record(level=logging.ERROR, exc_info=exc_info))
            )

        assert entry["source"] == "/app/edumeter_analytics/core/ctt.py:42"
        assert "ValueError: bad value" in entry["exception"]


class TestJobContext:
    def test_context_is_reset_after_block(self):
        with job_context("tenant-a", "detect"):
            analysis_run_id_context.set("run-1")
            assert tenant_id_context.get() == "tenant-a"

        assert tenant_id_context.get() is None
        assert task_context.get() is None

    def test_context_absent_outside_job(self):
        entry = json.loads(JSONFormatter().format(_record()))
        assert "tenant_id" not in entry
        assert "task" not in entry
