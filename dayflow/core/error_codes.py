"""
Standardised error handling for Dayflow.
"""

from dayflow.core.constants import ErrorCode, RETRYABLE_ERRORS


class DayflowError(Exception):
    """Raised when the pipeline encounters a known error condition."""

    default_code = ErrorCode.UNEXPECTED

    def __init__(self, message: str, code: str | None = None, retryable: bool | None = None):
        self.code = code or self.default_code
        self.message = message
        # auto-detect retryable from code if not explicitly set
        self.retryable = retryable if retryable is not None else (self.code in RETRYABLE_ERRORS)
        super().__init__(f"[{self.code}] {message}")


class StorageError(DayflowError):
    """Uninitialized store or chunk file I/O failure."""
    default_code = ErrorCode.STORAGE_IO


class ProviderError(DayflowError):
    """Network, non-2xx or transport failure from an AI backend."""
    default_code = ErrorCode.PROVIDER_REQUEST


class ConfigurationError(DayflowError):
    """Missing credential or invalid provider selection."""
    default_code = ErrorCode.CONFIGURATION


class ValidationError(DayflowError):
    """Provider answered, but the body does not match the expected shape."""
    default_code = ErrorCode.PROVIDER_RESPONSE_INVALID


def is_retryable(code: str) -> bool:
    return code in RETRYABLE_ERRORS
