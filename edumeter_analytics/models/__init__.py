"""
Models package for the analytics engine.
"""
from .base import Base, build_engine, get_session_factory
from .models import (
    Student,
    TestSession,
    ItemResponse,
    AnalysisRun,
    ItemCttStat,
    ItemIrtParam,
    ItemExposureStat,
    ItemDetectionResult,
    AnalysisJobLock,
    RunType,
    DetectionType,
    DetectionStatus,
    IrtModelKind,
)

__all__ = [
    "Base",
    "build_engine",
    "get_session_factory",
    "Student",
    "TestSession",
    "ItemResponse",
    "AnalysisRun",
    "ItemCttStat",
    "ItemIrtParam",
    "ItemExposureStat",
    "ItemDetectionResult",
    "AnalysisJobLock",
    "RunType",
    "DetectionType",
    "DetectionStatus",
    "IrtModelKind",
]
