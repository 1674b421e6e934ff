"""
Centralized error handling and classification for MemoryLane.

Every failure raised by the pipeline is a ``MemoryLaneError`` carrying its
category, the stage that failed (upload, rotate, delete, list, export) and the
HTTP status the API layer should answer with.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from memorylane.logging_config import get_logger, log_error

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Error categories for classification and handling."""

    VALIDATION = "validation"
    IMAGE_PROCESSING = "image_processing"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    STORAGE = "storage"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorStage(Enum):
    """Pipeline stage an error was raised from."""

    UPLOAD = "upload"
    ROTATE = "rotate"
    DELETE = "delete"
    LIST = "list"
    EXPORT = "export"


@dataclass
class ErrorInfo:
    """Structured error information."""

    category: ErrorCategory
    severity: ErrorSeverity
    stage: ErrorStage | None
    code: str
    message: str
    user_message: str
    status_code: int
    details: dict[str, Any]
    timestamp: datetime
    recoverable: bool = True
    retry_suggested: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert error info to dictionary."""
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "stage": self.stage.value if self.stage else None,
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "status_code": self.status_code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "retry_suggested": self.retry_suggested,
        }


class MemoryLaneError(Exception):
    """Base exception class for the MemoryLane pipeline."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        code: str | None = None,
        user_message: str | None = None,
        stage: ErrorStage | None = None,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
        response_extra: dict[str, Any] | None = None,
        recoverable: bool = True,
        retry_suggested: bool = False,
        original_exception: Exception | None = None,
    ):
        super().__init__(message)
        self.category = category
        self.severity = severity
        self.code = code or f"{category.value}_error"
        self.user_message = user_message or self._generate_user_message()
        self.stage = stage
        self.status_code = status_code
        self.details = details or {}
        self.response_extra = response_extra or {}
        self.recoverable = recoverable
        self.retry_suggested = retry_suggested
        self.original_exception = original_exception
        self.timestamp = datetime.now()

        self._log_error()

    def _generate_user_message(self) -> str:
        """Generate user-friendly error message."""
        user_messages = {
            ErrorCategory.VALIDATION: "The request was invalid.",
            ErrorCategory.IMAGE_PROCESSING: "The image could not be processed.",
            ErrorCategory.CONFLICT: "The request conflicts with the current state.",
            ErrorCategory.NOT_FOUND: "The requested file was not found.",
            ErrorCategory.STORAGE: "A storage error occurred.",
            ErrorCategory.UNKNOWN: "An unexpected error occurred.",
        }
        return user_messages.get(self.category, "An error occurred.")

    def _log_error(self) -> None:
        """Log the error with appropriate level."""
        error_context = {
            "category": self.category.value,
            "severity": self.severity.value,
            "stage": self.stage.value if self.stage else None,
            "code": self.code,
            "recoverable": self.recoverable,
            "retry_suggested": self.retry_suggested,
            **self.details,
        }

        if self.original_exception:
            error_context["original_exception"] = str(self.original_exception)

        # Client mistakes are expected traffic
        level = "warning" if self.severity == ErrorSeverity.LOW else "error"
        log_error(self, error_context, level=level)

    def get_error_info(self) -> ErrorInfo:
        """Get structured error information."""
        return ErrorInfo(
            category=self.category,
            severity=self.severity,
            stage=self.stage,
            code=self.code,
            message=str(self),
            user_message=self.user_message,
            status_code=self.status_code,
            details=self.details,
            timestamp=self.timestamp,
            recoverable=self.recoverable,
            retry_suggested=self.retry_suggested,
        )

    def to_response(self) -> dict[str, Any]:
        """JSON body returned to the gallery UI."""
        return {
            "success": False,
            "error": self.user_message,
            "code": self.code,
            "stage": self.stage.value if self.stage else None,
            **self.response_extra,
        }


class ValidationError(MemoryLaneError):
    """Bad type, size, degrees, filename or a missing file. Never retried."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        user_message: str | None = None,
        stage: ErrorStage | None = None,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
        original_exception: Exception | None = None,
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.LOW,
            code=code or "validation_failed",
            user_message=user_message or message,
            stage=stage,
            status_code=status_code,
            details=details,
            recoverable=True,
            retry_suggested=False,
            original_exception=original_exception,
        )


class TransientCodecError(MemoryLaneError):
    """Conversion, thumbnail or rotation encode failure."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        user_message: str | None = None,
        stage: ErrorStage | None = None,
        details: dict[str, Any] | None = None,
        retry_suggested: bool = True,
        original_exception: Exception | None = None,
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.IMAGE_PROCESSING,
            severity=ErrorSeverity.MEDIUM,
            code=code or "image_processing_failed",
            user_message=user_message or "The image could not be processed.",
            stage=stage,
            status_code=500,
            details=details,
            recoverable=True,
            retry_suggested=retry_suggested,
            original_exception=original_exception,
        )


class ConflictError(MemoryLaneError):
    """The requested change conflicts with existing state (e.g. an export already exists)."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        user_message: str | None = None,
        stage: ErrorStage | None = None,
        details: dict[str, Any] | None = None,
        response_extra: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.CONFLICT,
            severity=ErrorSeverity.LOW,
            code=code or "conflict",
            user_message=user_message or message,
            stage=stage,
            status_code=400,
            details=details,
            response_extra=response_extra,
            recoverable=True,
            retry_suggested=False,
        )


class NotFoundError(MemoryLaneError):
    """Missing image or export artifact."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        user_message: str | None = None,
        stage: ErrorStage | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.NOT_FOUND,
            severity=ErrorSeverity.LOW,
            code=code or "not_found",
            user_message=user_message or message,
            stage=stage,
            status_code=404,
            details=details,
            recoverable=False,
            retry_suggested=False,
        )


class StorageError(MemoryLaneError):
    """Disk I/O failure during persist, delete, rename or archive creation."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        user_message: str | None = None,
        stage: ErrorStage | None = None,
        details: dict[str, Any] | None = None,
        original_exception: Exception | None = None,
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.STORAGE,
            severity=ErrorSeverity.HIGH,
            code=code or "storage_error",
            user_message=user_message or "A storage error occurred.",
            stage=stage,
            status_code=500,
            details=details,
            recoverable=True,
            retry_suggested=False,
            original_exception=original_exception,
        )


_STAGE_FAILURE_MESSAGES = {
    ErrorStage.UPLOAD: "Upload failed",
    ErrorStage.ROTATE: "Failed to rotate image",
    ErrorStage.DELETE: "Failed to delete image",
    ErrorStage.LIST: "Failed to read images",
    ErrorStage.EXPORT: "Failed to create export",
}


def wrap_error(
    error: Exception,
    stage: ErrorStage,
    context: dict[str, Any] | None = None,
    message: str | None = None,
    code: str | None = None,
) -> MemoryLaneError:
    """
    Classify an exception raised while handling a request.

    Pipeline errors pass through untouched; anything else becomes a
    ``StorageError`` tagged with the failing stage.

    Args:
        error: Exception to classify
        stage: Stage that was being executed
        context: Additional context information
        message: User message, when the operation is not the stage's main one
        code: Error code to go with ``message``

    Returns:
        MemoryLaneError: Structured error for the API layer
    """
    if isinstance(error, MemoryLaneError):
        if error.stage is None:
            error.stage = stage
        return error

    message = message or _STAGE_FAILURE_MESSAGES[stage]
    return StorageError(
        f"{message}: {error}",
        code=code or f"{stage.value}_failed",
        user_message=f"{message}: {error}" if stage == ErrorStage.UPLOAD else message,
        stage=stage,
        details={"original_type": type(error).__name__, **(context or {})},
        original_exception=error,
    )
