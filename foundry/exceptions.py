"""Custom exception classes for export-foundry.

This module provides specific exception types for better error handling and debugging.
"""

from typing import Optional, Dict, Any


class ExportFoundryError(Exception):
    """Base exception for all export-foundry errors."""

    error_code: str = "ERR000"  # Override in subclasses

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, error_code: Optional[str] = None):
        """
        Initialize export-foundry exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context
            error_code: Optional error code override
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def __str__(self) -> str:
        """Return string representation with error code and details."""
        parts = [f"[{self.error_code}] {self.message}"]
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)


def _error_details(original_error: Optional[BaseException]) -> Dict[str, Any]:
    if original_error is None:
        return {}
    return {
        "original_error": str(original_error),
        "error_type": type(original_error).__name__,
    }


class ConfigValidationError(ExportFoundryError):
    """Raised when configuration validation fails.

    Examples:
        - Missing required configuration keys
        - Invalid configuration values
        - Type mismatches in configuration
    """

    error_code = "CFG001"

    def __init__(self, message: str, config_path: Optional[str] = None, key: Optional[str] = None):
        details = {}
        if config_path:
            details['config_path'] = config_path
        if key:
            details['config_key'] = key
        super().__init__(message, details)
        self.key = key


class PlanningError(ExportFoundryError):
    """Raised when a shard plan cannot be computed.

    Examples:
        - Table statistics missing from the remote service
        - Negative row or byte counts
        - Non-positive parallelism hint
    """

    error_code = "PLAN001"

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if table:
            details['table'] = table
        details.update(_error_details(original_error))
        super().__init__(message, details)
        self.original_error = original_error


class SubmissionError(ExportFoundryError):
    """Raised when the remote service rejects a job submission.

    No retry happens at this layer; the remote client performs its own.
    """

    error_code = "SUBMIT001"

    def __init__(
        self,
        message: str,
        job_kind: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if job_kind:
            details['job_kind'] = job_kind
        details.update(_error_details(original_error))
        super().__init__(message, details)
        self.original_error = original_error


class PollingTransportError(ExportFoundryError):
    """Raised on a transient I/O failure while checking job or file status.

    Callers retry these with bounded exponential backoff.
    """

    error_code = "POLL001"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details['operation'] = operation
        details.update(_error_details(original_error))
        super().__init__(message, details)
        self.original_error = original_error


class PollingTimeoutError(ExportFoundryError):
    """Raised when a wait exceeds its hard deadline."""

    error_code = "POLL002"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        timeout_seconds: Optional[float] = None
    ):
        details: Dict[str, Any] = {}
        if operation:
            details['operation'] = operation
        if timeout_seconds is not None:
            details['timeout_seconds'] = timeout_seconds
        super().__init__(message, details)


class RetryExhaustedError(ExportFoundryError):
    """Raised when all retry attempts are exhausted.

    Examples:
        - Status polling failed until the deadline
        - Object store listing kept timing out
    """

    error_code = "RETRY001"

    def __init__(
        self,
        message: str,
        attempts: Optional[int] = None,
        operation: Optional[str] = None,
        last_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {}
        if attempts is not None:
            details['attempts'] = attempts
        if operation:
            details['operation'] = operation
        if last_error:
            details['last_error'] = str(last_error)
            details['error_type'] = type(last_error).__name__
        super().__init__(message, details)
        self.last_error = last_error


class RemoteJobFailure(ExportFoundryError):
    """Raised when a remote query or export job reports failure.

    Always fatal. Readers surface it instead of ending the stream.
    """

    error_code = "JOB001"

    def __init__(self, message: str, job_id: Optional[str] = None, cause: Optional[str] = None):
        details = {}
        if job_id:
            details['job_id'] = job_id
        if cause:
            details['cause'] = cause
        super().__init__(message, details)
        self.job_id = job_id
        self.cause = cause


class ShardDataError(ExportFoundryError):
    """Raised when a shard file is corrupt or truncated after the export finished."""

    error_code = "DATA001"

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        offset: Optional[int] = None,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {}
        if file_path:
            details['file_path'] = file_path
        if offset is not None:
            details['offset'] = offset
        details.update(_error_details(original_error))
        super().__init__(message, details)
        self.original_error = original_error


class IncompleteRecordError(ExportFoundryError):
    """Raised by a decoder when a file ends in the middle of a record."""

    error_code = "DATA002"

    def __init__(self, message: str, offset: int, original_error: Optional[Exception] = None):
        details: Dict[str, Any] = {'offset': offset}
        details.update(_error_details(original_error))
        super().__init__(message, details)
        self.offset = offset
        self.original_error = original_error


class StorageError(ExportFoundryError):
    """Raised when object store operations fail.

    Examples:
        - S3 get/list/delete failures
        - Local filesystem errors
        - Permission errors
    """

    error_code = "STG001"

    def __init__(
        self,
        message: str,
        backend_type: Optional[str] = None,
        operation: Optional[str] = None,
        remote_path: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if backend_type:
            details['backend_type'] = backend_type
        if operation:
            details['operation'] = operation
        if remote_path:
            details['remote_path'] = remote_path
        details.update(_error_details(original_error))
        super().__init__(message, details)
        self.original_error = original_error


class CleanupError(ExportFoundryError):
    """Failure to delete an intermediate table or export files.

    Cleanup is best-effort: these are logged and reported, never raised
    past the cleanup routine.
    """

    error_code = "CLEAN001"

    def __init__(self, message: str, target: Optional[str] = None, original_error: Optional[Exception] = None):
        details = {}
        if target:
            details['target'] = target
        details.update(_error_details(original_error))
        super().__init__(message, details)
        self.original_error = original_error


class OrchestrationStateError(ExportFoundryError):
    """Raised when an orchestrator operation is called in the wrong state."""

    error_code = "STATE001"

    def __init__(self, message: str, current_state: Optional[str] = None, operation: Optional[str] = None):
        details = {}
        if current_state:
            details['current_state'] = current_state
        if operation:
            details['operation'] = operation
        super().__init__(message, details)
