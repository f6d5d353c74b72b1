"""
Custom Exceptions - Error taxonomy of the schema gateway.

Every error carries a status code and an error code so an HTTP layer
can render it without knowing the internals:
- Foreground failures (cold fetch, direct query) are raised to the caller
- Background refresh failures are logged by the coordinator and never raised
- Persistence failures are logged by the adapter and treated as "no snapshot"
"""
from typing import Optional


class SchemaGatewayError(Exception):
    """
    Base exception for all schema gateway errors.

    Subclass this for specific error types.
    """
    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        """Convert to error response dict."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details
        }


class ValidationError(SchemaGatewayError):
    """Raised when caller input is rejected before reaching the executor."""
    status_code = 400
    error_code = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, details=f"field={field}" if field else None)
        self.field = field


class ObjectNotFoundError(SchemaGatewayError):
    """Raised when the executor cannot describe the requested object."""
    status_code = 404
    error_code = "object_not_found"

    def __init__(self, object_name: str, details: Optional[str] = None):
        super().__init__(f"Object not found: {object_name}", details=details)
        self.object_name = object_name


class GatewayFailure(SchemaGatewayError):
    """
    Raised when an executor process fails or its output is unusable.

    Attributes:
        detail: Diagnostic text (stderr or the executor's error message)
        raw_output: Everything the process wrote to stdout
        exit_code: Process exit status, if the process ran to completion
    """
    status_code = 502
    error_code = "gateway_failure"

    def __init__(
        self,
        message: str,
        detail: Optional[str] = None,
        raw_output: Optional[str] = None,
        exit_code: Optional[int] = None,
    ):
        super().__init__(message, details=detail)
        self.detail = detail
        self.raw_output = raw_output
        self.exit_code = exit_code

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["exit_code"] = self.exit_code
        return data


class GatewayTimeout(GatewayFailure):
    """Raised when an executor process outlives the configured timeout."""
    status_code = 504
    error_code = "gateway_timeout"

    def __init__(self, timeout_seconds: float, raw_output: Optional[str] = None):
        super().__init__(
            f"Executor timed out after {timeout_seconds:g} seconds",
            detail=f"timeout={timeout_seconds:g}s",
            raw_output=raw_output,
        )
        self.timeout_seconds = timeout_seconds


class RecordShapeError(SchemaGatewayError):
    """Raised when executor records do not match the expected shape."""
    status_code = 502
    error_code = "invalid_record"


class ColdFetchFailure(SchemaGatewayError):
    """Raised when a key has no cached value and its fetch failed."""
    status_code = 503
    error_code = "cold_fetch_failure"

    def __init__(self, key: str, cause: BaseException):
        details = getattr(cause, "details", None) or str(cause)
        super().__init__(f"Could not load '{key}': {cause}", details=details)
        self.key = key
        self.cause = cause


class PersistenceFailure(SchemaGatewayError):
    """Raised inside the persistence adapter for read/write errors."""
    status_code = 500
    error_code = "persistence_failure"
