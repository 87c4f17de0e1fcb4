"""
Exception hierarchy for the crawl ingestion backend.

Every error carries a ``context`` dict (project, task, storage unit, field
...) that travels into logs, API error bodies and ``Task.error_message``.

Hierarchy:
    ETLException
    ├── ExtractionError            fetching or reading the project's API
    │   └── APIExtractionError
    ├── TransformationError        caller input rejected (HTTP 400)
    │   ├── ValidationError
    │   │   └── SchemaValidationError
    │   └── DataFormatError
    ├── LoadError                  storage units and their tables
    │   ├── DatabaseError
    │   │   └── DatabaseConnectionError
    │   └── ProvisioningError
    └── EntityNotFoundError        unknown project, task or version

RetryableError and NonRetryableError are mixed into the leaves; the task
scheduler re-queues only RetryableError.
"""

from datetime import datetime
from typing import Any, Dict, Optional


class ETLException(Exception):
    """
    Base error.

    Attributes:
        message: Human-readable message, stored as the task's error text
        context: Identifiers of whatever failed
        original_exception: Driver/library error this one wraps, if any
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()
        if original_exception is not None:
            self.__cause__ = original_exception

    @property
    def retryable(self) -> bool:
        return isinstance(self, RetryableError)

    def __str__(self) -> str:
        parts = [f"{type(self).__name__}: {self.message}"]
        if self.context:
            parts.append(", ".join(f"{k}={v}" for k, v in self.context.items()))
        if self.original_exception is not None:
            parts.append(f"caused by {type(self.original_exception).__name__}: {self.original_exception}")
        return " | ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form used in API error bodies and structured logs."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "context": self.context,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Extraction
# ============================================================================

class ExtractionError(ETLException):
    """The project's API could not be fetched or read."""


class APIExtractionError(ExtractionError):
    """
    HTTP-level fetch failure.

    Context: api_url, method, status_code, response_body (truncated)
    """


# ============================================================================
# Caller input
# ============================================================================

class TransformationError(ETLException):
    """Input that can never succeed as given; surfaced as a rejected request."""


class ValidationError(TransformationError):
    """
    A definition supplied by the caller is malformed or conflicting.

    Context: field_name, validation_rule
    """


# ============================================================================
# Storage
# ============================================================================

class LoadError(ETLException):
    """Storage unit access failed."""


class DatabaseError(LoadError):
    """
    A statement against a storage unit failed.

    Context: operation (SELECT, INSERT, UPSERT, DDL), unit_name
    """


class ProvisioningError(LoadError):
    """
    A storage unit or its table could not be created.

    Context: unit_name, project_id, version
    """


# ============================================================================
# Retry classification
# ============================================================================

class RetryableError(ETLException):
    """
    Transient failure: upstream 5xx/429, timeouts, refused connections.

    ``retry_delay`` is the base delay of the scheduler's exponential backoff.
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


class NonRetryableError(ETLException):
    """Permanent failure; the task stays FAILED."""


class NetworkError(RetryableError, APIExtractionError):
    """Timeout, transport error or 5xx from the project's API."""


class RateLimitError(RetryableError, APIExtractionError):
    """HTTP 429. ``retry_after`` (seconds) replaces the base delay when sent."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after
            self.retry_delay = float(retry_after)


class DatabaseConnectionError(RetryableError, DatabaseError):
    """Storage unit unreachable or pool exhausted."""


class AuthenticationError(NonRetryableError, APIExtractionError):
    """HTTP 401/403 from the project's API."""


class ResourceNotFoundError(NonRetryableError, APIExtractionError):
    """HTTP 404 from the project's API."""


class SchemaValidationError(NonRetryableError, ValidationError):
    """Field definition, filter or identifier rejected before reaching storage."""


class DataFormatError(NonRetryableError, TransformationError):
    """A value cannot be coerced to its field's type."""


class EntityNotFoundError(NonRetryableError):
    """
    Referenced project, task, version or storage unit does not exist.

    Context: entity ("project", "task", "version", "storage_unit"), entity_id
    """
