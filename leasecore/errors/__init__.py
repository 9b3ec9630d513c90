"""Error handling module for deduplication operations."""

from .handlers import (
    ErrorHandler,
    ErrorContext,
    ErrorSeverity,
    ErrorCategory,
    DeduplicationError,
    WorkflowError,
    GroupNotFoundError,
    InvalidTransitionError,
    InvalidMergeTargetError,
    PersistenceError,
    GroupConflictError,
    HashLookupError,
    ConfigurationError,
)

__all__ = [
    "ErrorHandler",
    "ErrorContext",
    "ErrorSeverity",
    "ErrorCategory",
    "DeduplicationError",
    "WorkflowError",
    "GroupNotFoundError",
    "InvalidTransitionError",
    "InvalidMergeTargetError",
    "PersistenceError",
    "GroupConflictError",
    "HashLookupError",
    "ConfigurationError",
]
