"""
Custom exceptions for the ingestion pipeline with structured error context.

Every exception carries a message, a context dictionary and the original
exception (if any), so failures can be logged and reported with enough
detail to trace them back to a tenant, a resource and a record.

Exception Hierarchy:
    IngestionError (base)
    ├── ExtractionError
    │   ├── APIClientError
    │   │   ├── AuthenticationError
    │   │   ├── ResourceNotFoundError
    │   │   └── RateLimitError
    │   └── NetworkError
    ├── TransformationError
    │   ├── ValidationError
    │   └── DataFormatError
    ├── LoadError
    │   ├── DatabaseError
    │   └── UpsertError
    ├── SchedulerError
    ├── TenantError
    │   ├── TenantNotFoundError
    │   └── CredentialError
    ├── ImportAbortedError
    ├── ConfigurationError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class IngestionError(Exception):
    """
    Base exception for all ingestion errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (tenant, resource, record id, ...)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = dict(context or {})
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        context = {k: v for k, v in self.context.items() if k != "error_timestamp"}
        if context:
            context_str = ", ".join(f"{k}={v}" for k, v in context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(IngestionError):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Temporary database connection issues
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(IngestionError):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Invalid or incomplete source records
    - Resource not found (HTTP 404)
    """
    pass


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(IngestionError):
    """Base exception for failures talking to the source platform."""
    pass


class APIClientError(ExtractionError):
    """
    Exception raised when the source API answers with an error status.

    Context should include:
        - url: The endpoint that failed
        - status_code: HTTP status code
        - response_body: Response body (truncated)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, context, original_exception, **kwargs)
        self.status_code = status_code
        if status_code is not None:
            self.context["status_code"] = status_code


class NetworkError(RetryableError, ExtractionError):
    """Transport-level failures (timeouts, connection errors) that should be retried."""
    pass


class RateLimitError(RetryableError, APIClientError):
    """Rate limiting errors (HTTP 429) that should be retried after a wait."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.status_code = 429
        self.context["status_code"] = 429
        self.retry_after = retry_after  # Seconds to wait before retry
        if retry_after is not None:
            self.context["retry_after"] = retry_after


class AuthenticationError(NonRetryableError, APIClientError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


class ResourceNotFoundError(NonRetryableError, APIClientError):
    """Resource not found errors (HTTP 404) that should not be retried."""
    pass


# ============================================================================
# Transformation Errors
# ============================================================================

class TransformationError(IngestionError):
    """Base exception for mapping failures."""
    pass


class ValidationError(NonRetryableError, TransformationError):
    """
    Exception raised when a source record fails the structural gate.

    Context should include:
        - resource_type: customers, products or orders
        - external_id: Identifier of the record (if present)
        - errors: Field-level validation errors
    """
    pass


class DataFormatError(NonRetryableError, TransformationError):
    """A validated record has a field that cannot be mapped."""
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(IngestionError):
    """Base exception for persistence failures."""
    pass


class DatabaseError(RetryableError, LoadError):
    """
    Exception raised when database operations fail.

    Context should include:
        - operation: Type of database operation (UPSERT, DELETE, ...)
        - table_name: Name of the table
    """
    pass


class UpsertError(NonRetryableError, LoadError):
    """
    Exception raised when an upsert cannot be applied.

    Raised for an inconsistent record; never retried.

    Context should include:
        - external_id: ID of the record being upserted
        - tenant_id: Owning tenant
    """
    pass


# ============================================================================
# Scheduler / Tenant Errors
# ============================================================================

class SchedulerError(IngestionError):
    """Exception raised for job registry misuse (unknown job id, ...)."""
    pass


class TenantError(IngestionError):
    """Base exception for tenant lifecycle failures."""
    pass


class TenantNotFoundError(TenantError):
    """No active credential/client is registered for the tenant."""
    pass


class CredentialError(NonRetryableError, TenantError):
    """Supplied credentials failed validation against the source API."""
    pass


class ImportAbortedError(IngestionError):
    """An import run could not start (health check failed at run start)."""
    pass


class ConfigurationError(IngestionError):
    """Invalid or missing configuration."""
    pass
