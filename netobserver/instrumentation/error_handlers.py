"""
Error handling utilities for network call instrumentation.

Observation must never change the outcome of an instrumented call. This
module provides the error hierarchy, a per-observer error tracker, and the
helpers used to isolate observer callbacks and patch operations.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels for instrumentation failures."""
    HIGH = "high"           # Channel could not be installed or restored
    MEDIUM = "medium"       # Recoverable, logged at info
    LOW = "low"             # Record or callback issue, logged at debug


class NetObserverError(Exception):
    """Base exception for observer errors."""

    def __init__(self, message: str, severity: ErrorSeverity = ErrorSeverity.MEDIUM,
                 channel: Optional[str] = None, operation: Optional[str] = None,
                 original_error: Optional[BaseException] = None):
        self.message = message
        self.severity = severity
        self.channel = channel
        self.operation = operation
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)

        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with context."""
        parts = []
        if self.channel:
            parts.append(f"[{self.channel}]")
        if self.operation:
            parts.append(f"({self.operation})")
        parts.append(self.message)

        if self.original_error:
            parts.append(f"- Original error: {self.original_error}")

        return " ".join(parts)


class PatchError(NetObserverError):
    """A primitive could not be substituted or restored."""
    pass


class ConfigurationError(NetObserverError, ValueError):
    """Invalid observer configuration."""
    pass


class ObserverErrorHandler:
    """Tracks and logs errors raised while observing, per channel and operation."""

    def __init__(self):
        self.error_counts: Dict[str, int] = {}
        self.last_errors: Dict[str, datetime] = {}

    def handle_error(self, error: BaseException, channel: str, operation: str,
                     severity: ErrorSeverity = ErrorSeverity.MEDIUM) -> NetObserverError:
        """Record an error and log it according to its severity."""
        error_key = f"{channel}.{operation}"

        self.error_counts[error_key] = self.error_counts.get(error_key, 0) + 1
        self.last_errors[error_key] = datetime.now(timezone.utc)

        if isinstance(error, NetObserverError):
            observer_error = error
        else:
            observer_error = NetObserverError(
                f"Operation failed: {error}",
                severity=severity,
                channel=channel,
                operation=operation,
                original_error=error
            )

        self._log_error(observer_error, error_key)
        return observer_error

    def _log_error(self, error: NetObserverError, error_key: str) -> None:
        """Log error with appropriate level based on severity."""
        error_count = self.error_counts.get(error_key, 1)
        context = {
            "channel": error.channel,
            "operation": error.operation,
            "severity": error.severity.value,
            "error_count": error_count,
        }

        message = f"{error} (count: {error_count})"

        if error.severity == ErrorSeverity.HIGH:
            logger.warning(message, extra=context)
        elif error.severity == ErrorSeverity.MEDIUM:
            logger.info(message, extra=context)
        else:
            logger.debug(message, extra=context)

    def count(self, channel: str, operation: Optional[str] = None) -> int:
        """Number of errors recorded for a channel, or one of its operations."""
        if operation:
            return self.error_counts.get(f"{channel}.{operation}", 0)
        return sum(
            count for key, count in self.error_counts.items()
            if key.startswith(f"{channel}.")
        )

    def reset_errors(self, channel: Optional[str] = None) -> None:
        """Reset error tracking for a channel, or everything."""
        if channel is None:
            self.error_counts.clear()
            self.last_errors.clear()
            return

        for key in [key for key in self.error_counts if key.startswith(f"{channel}.")]:
            self.error_counts.pop(key, None)
            self.last_errors.pop(key, None)

    def get_error_summary(self, channel: Optional[str] = None) -> Dict[str, Any]:
        """Get error summary for debugging."""
        summary = {"error_counts": {}, "last_errors": {}}

        for key, count in self.error_counts.items():
            if channel is None or key.startswith(f"{channel}."):
                summary["error_counts"][key] = count
                if key in self.last_errors:
                    summary["last_errors"][key] = self.last_errors[key].isoformat()

        return summary


def emit_safely(callback: Optional[Callable[[Any], Any]], record: Any,
                error_handler: ObserverErrorHandler, channel: str) -> bool:
    """
    Deliver a record to the observer callback without letting it fail the call.

    Returns:
        True if the callback ran without raising, False otherwise
    """
    if callback is None:
        return False

    try:
        callback(record)
        return True
    except Exception as e:
        record_type = getattr(record, "type", "record")
        error_handler.handle_error(
            e, channel, f"emit_{getattr(record_type, 'value', record_type)}", ErrorSeverity.LOW
        )
        return False


@contextmanager
def instrumentation_context(error_handler: ObserverErrorHandler, channel: str,
                            operation: str, severity: ErrorSeverity = ErrorSeverity.HIGH):
    """Context manager for patch operations that must not break the host."""
    try:
        yield
    except Exception as e:
        error_handler.handle_error(e, channel, operation, severity)
