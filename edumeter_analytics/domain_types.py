"""Shared domain types for the analytics engine.

This module is the single source of truth for domain enums used by the
models, the configuration layer, and the estimators. It has no imports
from the rest of the package so any layer can depend on it.

Usage:
    from edumeter_analytics.domain_types import RunType, DetectionType
"""

import enum


class RunType(str, enum.Enum):
    """Analysis run type."""

    CTT = "CTT"
    IRT = "IRT"
    EXPOSURE = "EXPOSURE"
    DETECTION = "DETECTION"


class DetectionType(str, enum.Enum):
    """Detection rule families."""

    IPD = "IPD"
    DIF = "DIF"
    EXPOSURE = "EXPOSURE"
    TIME = "TIME"


class DetectionStatus(str, enum.Enum):
    """Reviewer-facing lifecycle of a detection result."""

    FLAGGED = "flagged"
    RESOLVED = "resolved"


class IrtModelKind(str, enum.Enum):
    """IRT model family. Only 2PL is estimated; the others reserve the slots."""

    TWO_PL = "2PL"
    THREE_PL = "3PL"
    FOUR_PL = "4PL"


# Task selector values accepted by the worker CLI
TASK_RUN_TYPES = {
    "ctt": RunType.CTT,
    "irt": RunType.IRT,
    "exposure": RunType.EXPOSURE,
    "detect": RunType.DETECTION,
}
