"""
Exception hierarchy for the analytics engine.

Insufficient data is never an exception: estimators skip the item or rule
and the run still completes. Everything here is fatal for the invocation
except InvalidStatusTransition, which is raised to reviewer tooling.
"""
from typing import Any, Dict, Optional


class AnalyticsError(Exception):
    """Base exception for analytics job errors."""

    def __init__(  # noqa: D107
        self,
        message: str,
        original_error: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.original_error = original_error
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            msg = f"{msg} (context: {ctx_str})"
        if self.original_error:
            msg = f"{msg} - caused by: {str(self.original_error)}"
        return msg


class ConfigurationError(AnalyticsError):
    """Missing store connection, tenant context, or invalid tunables."""


class DatabaseOperationError(AnalyticsError):
    """A read or write against the backing store failed."""

    def __init__(  # noqa: D107
        self,
        operation_name: str,
        original_error: Exception,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.operation_name = operation_name
        super().__init__(
            f"Failed to {operation_name}",
            original_error=original_error,
            context=context,
        )


class JobLockedError(AnalyticsError):
    """Another run of the same type holds the tenant lock."""


class InvalidStatusTransition(AnalyticsError):
    """A detection result status change outside flagged -> resolved."""
