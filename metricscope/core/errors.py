"""
Error taxonomy for the analytics engine.

Every error carries the operation that failed and the parameters it was
called with, so a failure can be reproduced from the message alone.
"""

from typing import Any


class AnalyticsError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, operation: str | None = None, **context: Any):
        self.message = message
        self.operation = operation
        self.context = context
        super().__init__(self._format())

    def _format(self) -> str:
        parts = []
        if self.operation:
            parts.append(f"[{self.operation}]")
        parts.append(self.message)
        if self.context:
            details = ", ".join(f"{k}={v!r}" for k, v in sorted(self.context.items()))
            parts.append(f"({details})")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "operation": self.operation,
            "context": {k: str(v) for k, v in self.context.items()},
        }


class ValidationError(AnalyticsError):
    """A required parameter is missing or out of range. Never retried."""


class ComputationError(AnalyticsError):
    """Input is numerically degenerate and no fallback applies."""


class DependencyError(AnalyticsError):
    """The upstream data-access layer failed or returned no data."""
