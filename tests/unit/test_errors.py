"""Unit tests for error classification and display.

Tests cover:
- AppError defaults derived from the error code
- Retryable code allow-list
- Error code extraction (explicit code, exception type, message heuristics)
- ErrorHandler classification, bounded log and statistics
- User-facing error display actions
"""

import asyncio

import pytest

from prompt_recipes.core.errors import (
    RETRYABLE_CODES,
    AppError,
    ErrorCategory,
    ErrorCode,
    ErrorHandler,
    ErrorSeverity,
    extract_error_code,
)


class TestAppError:
    """Test defaults derived from the error code."""

    def test_defaults_from_code(self):
        """Category, severity, retryability and user message should come from the code."""
        error = AppError("boom", ErrorCode.PROMPT_EXECUTION_FAILED)
        assert str(error) == "boom"
        assert error.category == ErrorCategory.AI_API
        assert error.severity == ErrorSeverity.HIGH
        assert error.retryable is True
        assert error.user_message

    def test_accepts_string_code(self):
        """String codes should be converted to ErrorCode."""
        assert AppError("x", "TIMEOUT_ERROR").code == ErrorCode.TIMEOUT_ERROR

    def test_unknown_code_rejected(self):
        """Unknown string codes should raise ValueError."""
        with pytest.raises(ValueError):
            AppError("x", "NOT_A_CODE")

    @pytest.mark.parametrize(
        "code",
        [
            ErrorCode.INVALID_INPUTS,
            ErrorCode.INVALID_TEMPLATE,
            ErrorCode.INVALID_INPUT,
            ErrorCode.API_NOT_AVAILABLE,
            ErrorCode.MODEL_UNAVAILABLE,
            ErrorCode.DOWNLOAD_FAILED,
            ErrorCode.AI_CLIENT_NOT_AVAILABLE,
            ErrorCode.RECIPE_NOT_FOUND,
        ],
    )
    def test_caller_and_capability_errors_not_retryable(self, code):
        """Validation and capability-unusable codes should never be retried."""
        assert AppError("x", code).retryable is False

    def test_retry_allow_list(self):
        """Transient and capability runtime codes should be retryable."""
        for code in (
            ErrorCode.NETWORK_ERROR,
            ErrorCode.TIMEOUT_ERROR,
            ErrorCode.QUOTA_EXCEEDED,
            ErrorCode.RATE_LIMITED,
            ErrorCode.TEMPORARY_FAILURE,
            ErrorCode.SESSION_CREATION_FAILED,
            ErrorCode.STREAMING_EXECUTION_FAILED,
            ErrorCode.MULTIMODAL_EXECUTION_FAILED,
        ):
            assert code in RETRYABLE_CODES


class TestExtractErrorCode:
    """Explicit codes win over exception types, which win over message heuristics."""

    def test_explicit_code_attribute(self):
        """A known code attribute on the exception should win over its message."""
        error = RuntimeError("network is down")
        error.code = "QUOTA_EXCEEDED"
        assert extract_error_code(error) == ErrorCode.QUOTA_EXCEEDED

    def test_unknown_explicit_code_falls_back_to_message(self):
        """Unknown code attributes should fall back to message heuristics."""
        error = RuntimeError("network is down")
        error.code = 503
        assert extract_error_code(error) == ErrorCode.NETWORK_ERROR

    def test_exception_types(self):
        """Timeout, connection and permission exception types should map to their codes."""
        assert extract_error_code(asyncio.TimeoutError()) == ErrorCode.TIMEOUT_ERROR
        assert extract_error_code(ConnectionRefusedError()) == ErrorCode.NETWORK_ERROR
        assert extract_error_code(PermissionError()) == ErrorCode.PERMISSION_DENIED

    @pytest.mark.parametrize(
        "message,code",
        [
            ("Model not available", ErrorCode.API_NOT_AVAILABLE),
            ("Quota exceeded for today", ErrorCode.QUOTA_EXCEEDED),
            ("429 Too Many Requests", ErrorCode.RATE_LIMITED),
            ("Request timeout", ErrorCode.TIMEOUT_ERROR),
            ("connection reset by peer", ErrorCode.NETWORK_ERROR),
            ("503 Service Unavailable", ErrorCode.TEMPORARY_FAILURE),
            ("permission denied", ErrorCode.PERMISSION_DENIED),
            ("validation failed", ErrorCode.VALIDATION_ERROR),
            ("something odd", ErrorCode.UNKNOWN_ERROR),
        ],
    )
    def test_message_heuristics(self, message, code):
        """Message keywords should map to the matching code."""
        assert extract_error_code(RuntimeError(message)) == code


class TestErrorHandler:
    """Test ErrorHandler classification and error log."""

    def test_app_error_passes_through_unchanged(self, handler):
        """Already classified errors should be returned as is."""
        error = AppError("x", ErrorCode.INVALID_INPUTS)
        assert handler.handle_error(error) is error

    def test_foreign_error_wrapped(self, handler):
        """Foreign exceptions should be wrapped with a derived code, category and severity."""
        original = RuntimeError("connection refused")
        error = handler.handle_error(original, "Test")
        assert isinstance(error, AppError)
        assert error.code == ErrorCode.NETWORK_ERROR
        assert error.category == ErrorCategory.NETWORK
        assert error.severity == ErrorSeverity.MEDIUM
        assert error.retryable is True
        assert error.original_error is original

    def test_critical_when_model_not_available(self, handler):
        """Model-unavailable messages should be critical AI API errors."""
        error = handler.handle_error(RuntimeError("AI model not available"))
        assert error.category == ErrorCategory.AI_API
        assert error.severity == ErrorSeverity.CRITICAL

    def test_storage_corruption_is_critical(self, handler):
        """Corrupted storage messages should be critical storage errors."""
        error = handler.handle_error(RuntimeError("storage data corrupted"))
        assert error.category == ErrorCategory.STORAGE
        assert error.severity == ErrorSeverity.CRITICAL

    def test_short_keywords_match_whole_words(self, handler):
        """'ai' must not match inside words like 'failed'."""
        error = handler.handle_error(RuntimeError("it failed"))
        assert error.category == ErrorCategory.UNKNOWN

    def test_error_log_bounded(self):
        """The error log should keep only the most recent entries."""
        handler = ErrorHandler(max_log_entries=3)
        for i in range(5):
            handler.handle_error(RuntimeError(f"error {i}"))
        stats = handler.get_error_stats()
        assert stats["total_errors"] == 3
        assert [e.message for e in stats["recent_errors"]] == ["error 2", "error 3", "error 4"]

    def test_error_stats_counts(self, handler):
        """Statistics should count errors by category and severity until cleared."""
        handler.handle_error(AppError("a", ErrorCode.TIMEOUT_ERROR))
        handler.handle_error(AppError("b", ErrorCode.TIMEOUT_ERROR))
        handler.handle_error(AppError("c", ErrorCode.INVALID_INPUTS))
        stats = handler.get_error_stats()
        assert stats["errors_by_category"] == {"timeout": 2, "validation": 1}
        assert stats["errors_by_severity"] == {"medium": 2, "low": 1}

        handler.clear_error_log()
        assert handler.get_error_stats()["total_errors"] == 0


class TestErrorDisplay:
    """Test user-facing error display."""

    def test_retryable_ai_error(self, handler):
        """Retryable AI errors should offer retry first, then settings and help."""
        display = handler.create_error_display(AppError("x", ErrorCode.PROMPT_EXECUTION_FAILED))
        assert display.title == "Error"
        assert [a.action for a in display.actions] == ["retry", "check-settings", "help"]
        assert display.actions[0].primary is True

    def test_non_retryable_validation_error(self, handler):
        """Validation errors should be a notice with help only."""
        display = handler.create_error_display(AppError("x", ErrorCode.INVALID_INPUTS))
        assert display.title == "Notice"
        assert [a.action for a in display.actions] == ["help"]

    def test_quota_error(self, handler):
        """Quota errors should offer a wait-and-retry action."""
        display = handler.create_error_display(AppError("x", ErrorCode.QUOTA_EXCEEDED))
        assert [a.label for a in display.actions] == ["Retry", "Wait & Retry", "Get Help"]

    def test_critical_title_and_user_message(self, handler):
        """Critical errors should use the critical title and the code's user message."""
        error = AppError("x", ErrorCode.MODEL_UNAVAILABLE)
        display = handler.create_error_display(error)
        assert display.title == "Critical Error"
        assert display.message == error.user_message
