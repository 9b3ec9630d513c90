"""Tests for the error taxonomy and handler."""

import pytest

from leasecore.errors import (
    DeduplicationError,
    ErrorCategory,
    ErrorHandler,
    ErrorSeverity,
    GroupConflictError,
    GroupNotFoundError,
    HashLookupError,
    InvalidMergeTargetError,
    InvalidTransitionError,
    PersistenceError,
    WorkflowError,
)


class TestErrorTypes:

    def test_hierarchy(self):
        assert issubclass(InvalidTransitionError, WorkflowError)
        assert issubclass(InvalidMergeTargetError, WorkflowError)
        assert issubclass(GroupNotFoundError, WorkflowError)
        assert issubclass(GroupConflictError, PersistenceError)
        assert issubclass(WorkflowError, DeduplicationError)

    def test_retryable_flags(self):
        assert HashLookupError("timeout").retryable
        assert PersistenceError("locked").retryable
        assert not GroupConflictError("taken").retryable
        assert not InvalidTransitionError("done").retryable

    def test_to_dict(self):
        error = InvalidTransitionError("Group g1 is resolved", group_id="g1", current_status="resolved")
        data = error.to_dict()

        assert data["error_type"] == "InvalidTransitionError"
        assert data["category"] == ErrorCategory.WORKFLOW.value
        assert data["severity"] == ErrorSeverity.HIGH.value
        assert data["context"] is None


class TestErrorHandler:

    @pytest.fixture
    def handler(self):
        return ErrorHandler()

    def test_wraps_foreign_errors(self, handler):
        original = ValueError("bad value")
        with pytest.raises(DeduplicationError) as exc_info:
            handler.handle_error(original)

        assert exc_info.value.cause is original
        assert exc_info.value.__cause__ is original

    def test_attaches_context(self, handler):
        error = PersistenceError("locked")
        with handler.error_context(operation="scan", resource_id="batch-1"):
            returned = handler.handle_error(error, reraise=False)

        assert returned is error
        assert error.context.operation == "scan"
        assert error.context.resource_id == "batch-1"

    def test_context_is_popped(self, handler):
        with handler.error_context(operation="scan"):
            assert handler.get_current_context() is not None
        assert handler.get_current_context() is None

    def test_statistics(self, handler):
        handler.handle_error(PersistenceError("a"), reraise=False)
        handler.handle_error(HashLookupError("b"), reraise=False)

        stats = handler.get_error_stats()
        assert stats["total_errors"] == 2
        assert stats["error_counts"]["PersistenceError"] == 1
        assert stats["retryable_errors"] == 2

    def test_user_friendly_messages(self, handler):
        assert "g1" in handler.create_user_friendly_message(GroupNotFoundError("x", group_id="g1"))
        message = handler.create_user_friendly_message(
            InvalidTransitionError("x", group_id="g1", current_status="dismissed")
        )
        assert "dismissed" in message
        message = handler.create_user_friendly_message(
            InvalidMergeTargetError("x", group_id="g1", merge_target_id="p9")
        )
        assert "p9" in message
