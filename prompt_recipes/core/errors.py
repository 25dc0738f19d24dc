"""Error taxonomy and classification for the execution engine.

Every failure surfaced by the engine is an ``AppError`` carrying:
- code: a member of the closed ``ErrorCode`` enumeration
- category / severity: derived from the code, or from heuristics for foreign errors
- retryable: True only for codes in ``RETRYABLE_CODES``
- user_message: text suitable for display, separate from the technical message

``ErrorHandler`` classifies arbitrary exceptions into ``AppError``s. Errors raised
by the capability layer already carry an explicit code and pass through
unchanged; message heuristics apply only to exceptions of unknown origin.
"""

import asyncio
from collections import deque
from enum import Enum
from typing import Optional

from prompt_recipes.models.models import ErrorAction, ErrorDisplay
from prompt_recipes.utils.logger import logger


class ErrorCategory(str, Enum):
    AI_API = "ai_api"
    STORAGE = "storage"
    VALIDATION = "validation"
    NETWORK = "network"
    PERMISSION = "permission"
    QUOTA = "quota"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode(str, Enum):
    # Caller supplied malformed arguments
    INVALID_INPUTS = "INVALID_INPUTS"
    INVALID_TEMPLATE = "INVALID_TEMPLATE"
    INVALID_INPUT = "INVALID_INPUT"
    INTERPOLATION_FAILED = "INTERPOLATION_FAILED"
    RECIPE_NOT_FOUND = "RECIPE_NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    # Capability unusable, needs external remediation
    API_NOT_AVAILABLE = "API_NOT_AVAILABLE"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    AI_CLIENT_NOT_AVAILABLE = "AI_CLIENT_NOT_AVAILABLE"
    INITIALIZATION_FAILED = "INITIALIZATION_FAILED"
    # Capability runtime failures
    SESSION_CREATION_FAILED = "SESSION_CREATION_FAILED"
    PROMPT_EXECUTION_FAILED = "PROMPT_EXECUTION_FAILED"
    STREAMING_EXECUTION_FAILED = "STREAMING_EXECUTION_FAILED"
    MULTIMODAL_EXECUTION_FAILED = "MULTIMODAL_EXECUTION_FAILED"
    MULTIMODAL_STREAMING_EXECUTION_FAILED = "MULTIMODAL_STREAMING_EXECUTION_FAILED"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    # Orchestrator-level wrappers
    EXECUTION_FAILED = "EXECUTION_FAILED"
    CUSTOM_EXECUTION_FAILED = "CUSTOM_EXECUTION_FAILED"
    # Transport and environment
    NETWORK_ERROR = "NETWORK_ERROR"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    RATE_LIMITED = "RATE_LIMITED"
    TEMPORARY_FAILURE = "TEMPORARY_FAILURE"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    STORAGE_NOT_AVAILABLE = "STORAGE_NOT_AVAILABLE"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RETRYABLE_CODES = frozenset(
    {
        ErrorCode.NETWORK_ERROR,
        ErrorCode.TIMEOUT_ERROR,
        ErrorCode.QUOTA_EXCEEDED,
        ErrorCode.RATE_LIMITED,
        ErrorCode.TEMPORARY_FAILURE,
        ErrorCode.SESSION_CREATION_FAILED,
        ErrorCode.PROMPT_EXECUTION_FAILED,
        ErrorCode.STREAMING_EXECUTION_FAILED,
        ErrorCode.MULTIMODAL_EXECUTION_FAILED,
        ErrorCode.MULTIMODAL_STREAMING_EXECUTION_FAILED,
        ErrorCode.EXECUTION_FAILED,
        ErrorCode.CUSTOM_EXECUTION_FAILED,
    }
)

_V, _AI, _N = ErrorCategory.VALIDATION, ErrorCategory.AI_API, ErrorCategory.NETWORK
_LOW, _MED, _HIGH, _CRIT = ErrorSeverity.LOW, ErrorSeverity.MEDIUM, ErrorSeverity.HIGH, ErrorSeverity.CRITICAL

# code -> (category, severity, user message)
_CODE_PROFILES: dict[ErrorCode, tuple[ErrorCategory, ErrorSeverity, str]] = {
    ErrorCode.INVALID_INPUTS: (_V, _LOW, "Please provide both a recipe and user input."),
    ErrorCode.INVALID_TEMPLATE: (_V, _LOW, "The recipe prompt is empty or invalid. Please edit the recipe."),
    ErrorCode.INVALID_INPUT: (_V, _LOW, "The input provided could not be used. Please check it and try again."),
    ErrorCode.INTERPOLATION_FAILED: (_V, _MED, "The prompt could not be prepared. Please check the recipe."),
    ErrorCode.RECIPE_NOT_FOUND: (_V, _LOW, "That recipe no longer exists."),
    ErrorCode.VALIDATION_ERROR: (_V, _LOW, "Invalid input provided. Please check your data."),
    ErrorCode.API_NOT_AVAILABLE: (
        _AI,
        _CRIT,
        "AI features are not available. Please check that the model provider is installed and configured.",
    ),
    ErrorCode.MODEL_UNAVAILABLE: (_AI, _CRIT, "The AI model is not available on this device."),
    ErrorCode.DOWNLOAD_FAILED: (
        _AI,
        _HIGH,
        "Failed to download the AI model. Please check your internet connection and storage space.",
    ),
    ErrorCode.AI_CLIENT_NOT_AVAILABLE: (
        _AI,
        _CRIT,
        "AI features are not available. Please check your model provider settings.",
    ),
    ErrorCode.INITIALIZATION_FAILED: (
        _AI,
        _CRIT,
        "AI initialization failed. Please check your settings and try again.",
    ),
    ErrorCode.SESSION_CREATION_FAILED: (_AI, _HIGH, "Could not start an AI session. Please try again."),
    ErrorCode.PROMPT_EXECUTION_FAILED: (_AI, _HIGH, "Failed to execute prompt. Please try again."),
    ErrorCode.STREAMING_EXECUTION_FAILED: (_AI, _HIGH, "The streamed response failed. Please try again."),
    ErrorCode.MULTIMODAL_EXECUTION_FAILED: (_AI, _HIGH, "Failed to process text and image. Please try again."),
    ErrorCode.MULTIMODAL_STREAMING_EXECUTION_FAILED: (
        _AI,
        _HIGH,
        "The streamed response for text and image failed. Please try again.",
    ),
    ErrorCode.TIMEOUT_ERROR: (ErrorCategory.TIMEOUT, _MED, "Request timed out. Please try again."),
    ErrorCode.EXECUTION_FAILED: (_AI, _HIGH, "Failed to execute recipe. Please try again."),
    ErrorCode.CUSTOM_EXECUTION_FAILED: (_AI, _HIGH, "Failed to execute prompt. Please try again."),
    ErrorCode.NETWORK_ERROR: (_N, _MED, "Network error. Please check your connection."),
    ErrorCode.QUOTA_EXCEEDED: (ErrorCategory.QUOTA, _HIGH, "You have reached the usage limit. Please try again later."),
    ErrorCode.RATE_LIMITED: (ErrorCategory.QUOTA, _HIGH, "Too many requests. Please wait a moment before trying again."),
    ErrorCode.TEMPORARY_FAILURE: (_AI, _MED, "The AI service is temporarily unavailable. Please try again."),
    ErrorCode.PERMISSION_DENIED: (ErrorCategory.PERMISSION, _HIGH, "Permission denied. Please check your settings."),
    ErrorCode.STORAGE_NOT_AVAILABLE: (ErrorCategory.STORAGE, _HIGH, "Storage is not available."),
    ErrorCode.UNKNOWN_ERROR: (ErrorCategory.UNKNOWN, _MED, "An unexpected error occurred. Please try again."),
}


class AppError(Exception):
    """Classified engine error.

    Category, severity, retryability and user message default to the profile of
    ``code`` and may be overridden per instance.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode | str,
        *,
        category: Optional[ErrorCategory] = None,
        severity: Optional[ErrorSeverity] = None,
        retryable: Optional[bool] = None,
        user_message: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        profile_category, profile_severity, profile_message = _CODE_PROFILES[self.code]
        self.category = category or profile_category
        self.severity = severity or profile_severity
        self.retryable = self.code in RETRYABLE_CODES if retryable is None else retryable
        self.user_message = user_message or profile_message
        self.original_error = original_error

    def __repr__(self) -> str:
        return f"AppError(code={self.code.value}, message={self.message!r}, retryable={self.retryable})"


# Message fragments checked in order; first match wins
_CODE_PATTERNS: tuple[tuple[tuple[str, ...], ErrorCode], ...] = (
    (("not available",), ErrorCode.API_NOT_AVAILABLE),
    (("quota",), ErrorCode.QUOTA_EXCEEDED),
    (("rate limit", "too many requests", "429"), ErrorCode.RATE_LIMITED),
    (("timeout", "timed out"), ErrorCode.TIMEOUT_ERROR),
    (("network", "connection"), ErrorCode.NETWORK_ERROR),
    (("500", "502", "503", "temporar", "retryable"), ErrorCode.TEMPORARY_FAILURE),
    (("permission",), ErrorCode.PERMISSION_DENIED),
    (("validation",), ErrorCode.VALIDATION_ERROR),
)

_CATEGORY_PATTERNS: tuple[tuple[tuple[str, ...], ErrorCategory], ...] = (
    (("ai", "model", "language"), ErrorCategory.AI_API),
    (("storage", "save", "load"), ErrorCategory.STORAGE),
    (("validation", "invalid"), ErrorCategory.VALIDATION),
    (("network", "connection"), ErrorCategory.NETWORK),
    (("permission", "access"), ErrorCategory.PERMISSION),
    (("quota", "limit"), ErrorCategory.QUOTA),
    (("timeout",), ErrorCategory.TIMEOUT),
)


def _contains_word(message: str, fragment: str) -> bool:
    # Short fragments ("ai") must match whole words, not "email" or "failed"
    if len(fragment) > 3:
        return fragment in message
    return any(fragment == word for word in "".join(c if c.isalnum() else " " for c in message).split())


def extract_error_code(error: BaseException) -> ErrorCode:
    """Resolve an error code: explicit ``code`` attribute, exception type, then message heuristics."""
    explicit = getattr(error, "code", None)
    if explicit is not None:
        try:
            return ErrorCode(explicit)
        except ValueError:
            pass

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ErrorCode.TIMEOUT_ERROR
    if isinstance(error, ConnectionError):
        return ErrorCode.NETWORK_ERROR
    if isinstance(error, PermissionError):
        return ErrorCode.PERMISSION_DENIED

    message = str(error).lower()
    for fragments, code in _CODE_PATTERNS:
        if any(_contains_word(message, fragment) for fragment in fragments):
            return code
    return ErrorCode.UNKNOWN_ERROR


def determine_category(error: BaseException, code: ErrorCode) -> ErrorCategory:
    message = str(error).lower()
    for fragments, category in _CATEGORY_PATTERNS:
        if any(_contains_word(message, fragment) for fragment in fragments):
            return category
    return _CODE_PROFILES[code][0]


def determine_severity(error: BaseException, category: ErrorCategory) -> ErrorSeverity:
    message = str(error).lower()

    if category == ErrorCategory.AI_API and "not available" in message:
        return ErrorSeverity.CRITICAL
    if category == ErrorCategory.STORAGE and "corrupted" in message:
        return ErrorSeverity.CRITICAL
    if category in (ErrorCategory.QUOTA, ErrorCategory.PERMISSION):
        return ErrorSeverity.HIGH
    if category in (ErrorCategory.NETWORK, ErrorCategory.TIMEOUT):
        return ErrorSeverity.MEDIUM
    if category == ErrorCategory.VALIDATION:
        return ErrorSeverity.LOW
    return ErrorSeverity.MEDIUM


class ErrorHandler:
    """Classifies exceptions and keeps a bounded log of recent errors."""

    def __init__(self, max_log_entries: int = 100) -> None:
        self._error_log: deque[AppError] = deque(maxlen=max_log_entries)

    def handle_error(self, error: BaseException, context: Optional[str] = None) -> AppError:
        """Classify ``error`` and record it.

        Args:
            error: Any exception raised by an engine operation.
            context: Short description of the operation, used for logging.

        Returns:
            The same instance if ``error`` is already an ``AppError``, otherwise
            a new ``AppError`` wrapping it.
        """
        app_error = error if isinstance(error, AppError) else self.categorize_error(error)
        self._log_error(app_error, context)
        return app_error

    def categorize_error(self, error: BaseException) -> AppError:
        code = extract_error_code(error)
        category = determine_category(error, code)
        return AppError(
            str(error) or type(error).__name__,
            code,
            category=category,
            severity=determine_severity(error, category),
            original_error=error,
        )

    def _log_error(self, error: AppError, context: Optional[str]) -> None:
        self._error_log.append(error)
        msg = (
            f"{context or 'Operation'} failed: {error.message} "
            f"(code={error.code.value}, category={error.category.value}, "
            f"severity={error.severity.value}, retryable={error.retryable})"
        )
        if error.severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL):
            logger.error(msg, extra={"error_code": error.code.value})
        else:
            logger.warning(msg, extra={"error_code": error.code.value})

    def get_error_stats(self) -> dict:
        """Counts by category and severity plus the ten most recent errors."""
        errors_by_category: dict[str, int] = {}
        errors_by_severity: dict[str, int] = {}
        for error in self._error_log:
            errors_by_category[error.category.value] = errors_by_category.get(error.category.value, 0) + 1
            errors_by_severity[error.severity.value] = errors_by_severity.get(error.severity.value, 0) + 1

        return {
            "total_errors": len(self._error_log),
            "errors_by_category": errors_by_category,
            "errors_by_severity": errors_by_severity,
            "recent_errors": list(self._error_log)[-10:],
        }

    def clear_error_log(self) -> None:
        self._error_log.clear()

    def create_error_display(self, error: AppError) -> ErrorDisplay:
        """Build the title, message and actions shown to the user for ``error``."""
        actions: list[ErrorAction] = []

        if error.retryable:
            actions.append(ErrorAction(label="Retry", action="retry", primary=True))

        if error.category == ErrorCategory.AI_API:
            actions.append(ErrorAction(label="Check Settings", action="check-settings"))
        elif error.category == ErrorCategory.STORAGE:
            actions.append(ErrorAction(label="Clear Storage", action="clear-storage"))
        elif error.category == ErrorCategory.QUOTA:
            actions.append(ErrorAction(label="Wait & Retry", action="wait-retry"))

        actions.append(ErrorAction(label="Get Help", action="help"))

        titles = {
            ErrorSeverity.CRITICAL: "Critical Error",
            ErrorSeverity.HIGH: "Error",
            ErrorSeverity.MEDIUM: "Warning",
            ErrorSeverity.LOW: "Notice",
        }
        return ErrorDisplay(
            title=titles.get(error.severity, "Error"),
            message=error.user_message or error.message,
            actions=actions,
        )


# Shared handler used when callers do not inject their own
error_handler = ErrorHandler()
