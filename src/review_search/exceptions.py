"""Custom exceptions for the review search system."""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Machine-readable error codes attached to every raised error."""
    MODEL_INITIALIZATION_FAILED = "MODEL_INITIALIZATION_FAILED"
    DB_CONNECTION_FAILED = "DB_CONNECTION_FAILED"
    DB_QUERY_FAILED = "DB_QUERY_FAILED"
    DB_INSERTION_FAILED = "DB_INSERTION_FAILED"
    DB_TABLE_CREATION_FAILED = "DB_TABLE_CREATION_FAILED"
    TABLE_NOT_FOUND = "TABLE_NOT_FOUND"
    EMBEDDING_GENERATION_FAILED = "EMBEDDING_GENERATION_FAILED"
    FILE_PROCESSING_FAILED = "FILE_PROCESSING_FAILED"
    UNSAFE_PROJECT_PATH = "UNSAFE_PROJECT_PATH"
    CONFIG_INVALID_VALUE = "CONFIG_INVALID_VALUE"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RETRYABLE_CODES = frozenset({
    ErrorCode.MODEL_INITIALIZATION_FAILED,
    ErrorCode.DB_CONNECTION_FAILED,
})


class ReviewSearchError(Exception):
    """Base exception for review search errors."""

    default_code = ErrorCode.UNKNOWN_ERROR

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        error_code: Optional[ErrorCode] = None
    ):
        """Initialize with message, optional details, cause and error code."""
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause
        self.error_code = error_code or self.default_code

        # Set the cause for proper exception chaining
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        """String representation with details."""
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message

    @classmethod
    def from_exception(
        cls,
        message: str,
        cause: Exception,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[ErrorCode] = None
    ):
        """Create exception with proper chaining from another exception."""
        return cls(message, details, cause, error_code)

    @property
    def is_retryable(self) -> bool:
        return self.error_code in RETRYABLE_CODES


class ConfigurationError(ReviewSearchError):
    """Exception raised for configuration-related errors."""
    default_code = ErrorCode.CONFIG_INVALID_VALUE


class InitializationError(ReviewSearchError):
    """Model or storage is not ready. Fatal for the current call; callers may retry."""
    default_code = ErrorCode.MODEL_INITIALIZATION_FAILED


class ComputationError(ReviewSearchError):
    """A single embedding computation failed."""
    default_code = ErrorCode.EMBEDDING_GENERATION_FAILED


class StorageError(ReviewSearchError):
    """Exception raised for query, add or delete failures in the store."""
    default_code = ErrorCode.DB_QUERY_FAILED


class IntegrityGuardError(ReviewSearchError):
    """A destructive project clear was rejected before any deletion."""
    default_code = ErrorCode.UNSAFE_PROJECT_PATH


class FileProcessingError(ReviewSearchError):
    """Exception raised when a file cannot be read or prepared for indexing."""
    default_code = ErrorCode.FILE_PROCESSING_FAILED


class SchemaDriftWarning(UserWarning):
    """A legacy table is missing an expected column. Logged, never raised."""


def is_retryable(error: BaseException) -> bool:
    """Check whether an error is worth retrying."""
    return isinstance(error, ReviewSearchError) and error.is_retryable
