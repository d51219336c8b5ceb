"""
Database models for the analytics engine.

Response data (students, test_sessions, item_responses) is written by the
ingestion service and only read here. The analytics tables are append-only
history keyed by analysis run; every table is scoped by tenant_id.
"""
from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    Enum,
    Float,
    Index,
    CheckConstraint,
    PrimaryKeyConstraint,
    event,
)
from sqlalchemy.orm import relationship

from edumeter_analytics.core.datetime_utils import utc_now
from edumeter_analytics.core.errors import AnalyticsError
from edumeter_analytics.domain_types import (
    DetectionStatus,
    DetectionType,
    IrtModelKind,
    RunType,
)

from .base import Base
from .types import JSONDocument, new_id


def _enum_values(enum_cls):
    """Persist enum values (e.g. "flagged") rather than member names."""
    return [member.value for member in enum_cls]


# =============================================================================
# Response store (read-only for the engine)
# =============================================================================


class Student(Base):
    """Examinee record; attributes["group"] carries the DIF subgroup label."""

    __tablename__ = "students"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=False, index=True)
    external_id = Column(String(255))
    # Generic JSON so the subgroup label can be extracted in SQL on both dialects
    attributes = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    test_sessions = relationship("TestSession", back_populates="student")


class TestSession(Base):
    """A single sitting by one examinee."""

    __tablename__ = "test_sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=False, index=True)
    student_id = Column(
        String(36), ForeignKey("students.id", ondelete="SET NULL"), nullable=True
    )
    started_at = Column(DateTime(timezone=True), default=utc_now)
    completed_at = Column(DateTime(timezone=True))

    student = relationship("Student", back_populates="test_sessions")
    responses = relationship("ItemResponse", back_populates="test_session")


class ItemResponse(Base):
    """One examinee answer to one item."""

    __tablename__ = "item_responses"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=False)
    session_id = Column(
        String(36),
        ForeignKey("test_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_id = Column(String(64), nullable=False)
    response_value = Column(String(500))
    is_correct = Column(Boolean, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    answered_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    test_session = relationship("TestSession", back_populates="responses")

    # Every engine query is (tenant, window) or (tenant, item)
    __table_args__ = (
        Index("ix_item_responses_tenant_answered", "tenant_id", "answered_at"),
        Index("ix_item_responses_tenant_item", "tenant_id", "item_id"),
    )


# =============================================================================
# Analytics history (append-only)
# =============================================================================


class AnalysisRun(Base):
    """
    Ledger entry for one batch invocation.

    dataset_hash is a coarse fingerprint of (row count, window start) so
    identical reruns over an unchanged window can be recognised without
    hashing every row.
    """

    __tablename__ = "analysis_runs"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=False)
    run_type = Column(
        Enum(RunType, name="analysis_run_type", values_callable=_enum_values),
        nullable=False,
    )
    params = Column(JSONDocument(), nullable=False, default=dict)
    data_range = Column(JSONDocument(), nullable=False, default=dict)
    dataset_hash = Column(String(64), nullable=False)
    software_version = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        Index("ix_analysis_runs_tenant_type_created", "tenant_id", "run_type", "created_at"),
    )


class ItemCttStat(Base):
    """Classical item statistics for one item in one CTT run."""

    __tablename__ = "item_ctt_stats"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=False)
    item_id = Column(String(64), nullable=False)
    analysis_run_id = Column(
        String(36), ForeignKey("analysis_runs.id"), nullable=False, index=True
    )
    n = Column(Integer, nullable=False)
    p_value = Column(Float, nullable=False)
    # Reported equal to point_biserial until a separate index is modelled
    discrimination = Column(Float, nullable=False)
    point_biserial = Column(Float, nullable=False)
    mean_time_ms = Column(Float, nullable=True)
    std_time_ms = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint("p_value >= 0 AND p_value <= 1", name="ck_ctt_p_value_range"),
        Index("ix_item_ctt_stats_tenant_item_created", "tenant_id", "item_id", "created_at"),
    )


class ItemIrtParam(Base):
    """Item parameters from one IRT run. c/d are fixed sentinels under 2PL."""

    __tablename__ = "item_irt_params"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=False)
    item_id = Column(String(64), nullable=False)
    analysis_run_id = Column(
        String(36), ForeignKey("analysis_runs.id"), nullable=False, index=True
    )
    model = Column(
        Enum(IrtModelKind, name="irt_model_kind", values_callable=_enum_values),
        nullable=False,
        default=IrtModelKind.TWO_PL,
    )
    a_param = Column(Float, nullable=False)
    b_param = Column(Float, nullable=False)
    c_param = Column(Float, nullable=False, default=0.0)
    d_param = Column(Float, nullable=False, default=1.0)
    estimation_method = Column(String(50), nullable=False)
    n = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        Index("ix_item_irt_params_tenant_item_created", "tenant_id", "item_id", "created_at"),
    )


class ItemExposureStat(Base):
    """Usage count and mean response time for one item in one exposure run."""

    __tablename__ = "item_exposure_stats"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=False)
    item_id = Column(String(64), nullable=False)
    analysis_run_id = Column(
        String(36), ForeignKey("analysis_runs.id"), nullable=False, index=True
    )
    exposure_count = Column(Integer, nullable=False)
    mean_time_ms = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        Index(
            "ix_item_exposure_stats_tenant_item_created",
            "tenant_id",
            "item_id",
            "created_at",
        ),
    )


class ItemDetectionResult(Base):
    """
    A flagged anomaly for reviewer follow-up.

    Created as "flagged" by the detection engine. The only transition is
    flagged -> resolved, performed by reviewer tooling; re-flagging an item
    inserts a new row.
    """

    __tablename__ = "item_detection_results"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=False)
    item_id = Column(String(64), nullable=False)
    detection_type = Column(
        Enum(DetectionType, name="detection_type", values_callable=_enum_values),
        nullable=False,
    )
    metric_name = Column(String(50), nullable=False)
    metric_value = Column(Float, nullable=False)
    threshold = Column(Float, nullable=False)
    status = Column(
        Enum(DetectionStatus, name="detection_status", values_callable=_enum_values),
        nullable=False,
        default=DetectionStatus.FLAGGED,
    )
    details = Column(JSONDocument(), nullable=False, default=dict)
    analysis_run_id = Column(
        String(36), ForeignKey("analysis_runs.id"), nullable=False, index=True
    )
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_item_detection_results_tenant_status", "tenant_id", "status"),
    )


class AnalysisJobLock(Base):
    """Lease lock serialising same-type runs for one tenant."""

    __tablename__ = "analysis_job_locks"

    tenant_id = Column(String(36), nullable=False)
    run_type = Column(
        Enum(RunType, name="analysis_run_type", values_callable=_enum_values),
        nullable=False,
    )
    locked_until = Column(DateTime(timezone=True), nullable=False)
    locked_by = Column(String(255), nullable=False)

    __table_args__ = (PrimaryKeyConstraint("tenant_id", "run_type"),)


IMMUTABLE_MODELS = (AnalysisRun, ItemCttStat, ItemIrtParam, ItemExposureStat)


def _reject_update(mapper, connection, target):
    raise AnalyticsError(
        f"{type(target).__name__} rows are append-only",
        context={"id": target.id},
    )


for _model in IMMUTABLE_MODELS:
    event.listen(_model, "before_update", _reject_update)
