"""
Core module for configuration, the estimators, and the detection engine.

Note: estimator modules are not imported at package level to avoid circular
imports with edumeter_analytics.models (which imports config and errors from
here). Import them directly: from edumeter_analytics.core.ctt import ...
"""
from .config import settings

__all__ = ["settings"]
