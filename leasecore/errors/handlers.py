"""Error types and handler with context preservation for deduplication operations."""

import traceback
from typing import Any, Dict, Optional, List
from datetime import datetime, timezone
from contextlib import contextmanager
import threading
from dataclasses import dataclass, field
from enum import Enum
import logging


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    WORKFLOW = "workflow"
    PERSISTENCE = "persistence"
    HASH_LOOKUP = "hash_lookup"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    operation: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    actor_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary."""
        return {
            "operation": self.operation,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
            "actor_id": self.actor_id,
        }


class DeduplicationError(Exception):
    """Base exception for all deduplication errors."""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.context = context
        self.cause = cause
        self.severity = severity
        self.category = category
        self.retryable = retryable
        self.timestamp = datetime.now(timezone.utc)

        self.stack_trace = traceback.format_exc()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_message": self.message,
            "context": self.context.to_dict() if self.context else None,
            "cause": str(self.cause) if self.cause else None,
            "severity": self.severity.value,
            "category": self.category.value,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
        }


class WorkflowError(DeduplicationError):
    """A review action violated the group lifecycle."""

    def __init__(
        self,
        message: str,
        group_id: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message,
            context=context,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.WORKFLOW,
            retryable=False,
        )
        self.group_id = group_id


class GroupNotFoundError(WorkflowError):
    """The requested duplicate group does not exist."""


class InvalidTransitionError(WorkflowError):
    """The group is not pending, so it cannot be resolved or dismissed."""

    def __init__(
        self,
        message: str,
        group_id: Optional[str] = None,
        current_status: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message, group_id=group_id, context=context)
        self.current_status = current_status


class InvalidMergeTargetError(WorkflowError):
    """The merge target is missing or is not a member of the group."""

    def __init__(
        self,
        message: str,
        group_id: Optional[str] = None,
        merge_target_id: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message, group_id=group_id, context=context)
        self.merge_target_id = merge_target_id


class PersistenceError(DeduplicationError):
    """The group or audit store failed to write or read."""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            context=context,
            cause=cause,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.PERSISTENCE,
            retryable=True,
        )


class GroupConflictError(PersistenceError):
    """A record already belongs to another pending group."""

    def __init__(
        self,
        message: str,
        record_ids: Optional[List[str]] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message, context=context)
        self.severity = ErrorSeverity.LOW
        self.retryable = False
        self.record_ids = record_ids or []


class HashLookupError(DeduplicationError):
    """Perceptual hash lookup failed or timed out."""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            context=context,
            cause=cause,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.HASH_LOOKUP,
            retryable=True,
        )


class ConfigurationError(DeduplicationError):
    """Invalid configuration value."""

    def __init__(self, message: str, key: Optional[str] = None, cause: Optional[Exception] = None):
        super().__init__(
            message,
            cause=cause,
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.CONFIGURATION,
            retryable=False,
        )
        self.key = key


class ErrorHandler:
    """Centralized error handler with context preservation."""

    def __init__(self):
        self._context_stack = threading.local()
        self.logger = logging.getLogger(__name__)

        self._error_counts: Dict[str, int] = {}
        self._error_history: List[DeduplicationError] = []
        self._max_history_size = 1000

    @contextmanager
    def error_context(self, **kwargs):
        """Context manager for error context.

        Usage:
            with error_handler.error_context(operation="resolve", resource_id=group_id):
                # Operations that might raise errors
                pass
        """
        if not hasattr(self._context_stack, "contexts"):
            self._context_stack.contexts = []

        context = ErrorContext(**kwargs)
        self._context_stack.contexts.append(context)

        try:
            yield context
        finally:
            if self._context_stack.contexts:
                self._context_stack.contexts.pop()

    def get_current_context(self) -> Optional[ErrorContext]:
        """Get current error context."""
        if hasattr(self._context_stack, "contexts") and self._context_stack.contexts:
            return self._context_stack.contexts[-1]
        return None

    def handle_error(
        self,
        error: Exception,
        operation: Optional[str] = None,
        reraise: bool = True,
    ) -> Optional[DeduplicationError]:
        """Handle an error with context preservation.

        Args:
            error: The error to handle
            operation: Operation being performed
            reraise: Whether to re-raise the error

        Returns:
            Wrapped error if not re-raised
        """
        context = self.get_current_context()
        if operation and context:
            context.operation = operation

        if isinstance(error, DeduplicationError):
            wrapped_error = error
            if not wrapped_error.context and context:
                wrapped_error.context = context
        else:
            wrapped_error = DeduplicationError(str(error), context=context, cause=error)

        self._log_error(wrapped_error)
        self._update_error_stats(wrapped_error)

        if reraise:
            if wrapped_error is error:
                raise wrapped_error
            raise wrapped_error from error

        return wrapped_error

    def _log_error(self, error: DeduplicationError) -> None:
        """Log error with appropriate severity."""
        error_dict = error.to_dict()

        if error.severity == ErrorSeverity.CRITICAL:
            self.logger.critical(f"Critical error: {error.message}", extra=error_dict)
        elif error.severity == ErrorSeverity.HIGH:
            self.logger.error(f"Error: {error.message}", extra=error_dict)
        elif error.severity == ErrorSeverity.MEDIUM:
            self.logger.warning(f"Warning: {error.message}", extra=error_dict)
        else:
            self.logger.info(f"Info: {error.message}", extra=error_dict)

    def _update_error_stats(self, error: DeduplicationError) -> None:
        """Update error statistics."""
        error_type = error.__class__.__name__
        self._error_counts[error_type] = self._error_counts.get(error_type, 0) + 1

        self._error_history.append(error)
        if len(self._error_history) > self._max_history_size:
            self._error_history = self._error_history[-self._max_history_size:]

    def get_error_stats(self) -> Dict[str, Any]:
        """Get error statistics."""
        recent_errors = self._error_history[-100:]

        severity_dist = {severity.value: 0 for severity in ErrorSeverity}
        for error in recent_errors:
            severity_dist[error.severity.value] += 1

        return {
            "total_errors": sum(self._error_counts.values()),
            "error_counts": self._error_counts.copy(),
            "severity_distribution": severity_dist,
            "retryable_errors": sum(1 for e in recent_errors if e.retryable),
        }

    def create_user_friendly_message(self, error: DeduplicationError) -> str:
        """Create user-friendly error message."""
        if isinstance(error, GroupNotFoundError):
            return f"Duplicate group not found: {error.group_id}"
        elif isinstance(error, InvalidTransitionError):
            return (
                f"Group {error.group_id} is already {error.current_status}; "
                "only pending groups can be reviewed."
            )
        elif isinstance(error, InvalidMergeTargetError):
            return f"Record {error.merge_target_id} is not a member of group {error.group_id}."
        elif isinstance(error, HashLookupError):
            return "Media hash lookup failed. Please try the scan again later."
        elif isinstance(error, ConfigurationError):
            if error.key:
                return f"Invalid configuration for '{error.key}': {error.message}"
            return f"Configuration error: {error.message}"

        return f"An error occurred: {error.message}"
