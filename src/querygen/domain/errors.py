"""
Custom exception hierarchy for the query generation service.

Every exception carries:
- a machine-readable error code
- the HTTP status an API layer should map it to
- optional structured details for debugging

Exception Categories:
- 4xx Client Errors: ValidationError, BadRequestError, NotFoundError, PermissionDeniedError
- 5xx Server Errors: DatabaseError, LLMError, EmbeddingError, VectorStoreError, ...

The workflow's own failure taxonomy (table error, query error, permission
error, generation failure, retry exhaustion) travels as pipeline status
values and ends in the Failed stage. Exceptions are reserved for
infrastructure failures and precondition violations.

Usage:
    raise DatabaseConnectionError("Failed to connect to database")
    raise BadRequestError("Tenant id is required", details={"field": "tenant_id"})
"""

from typing import Any, Dict, Optional


class QueryGenError(Exception):
    """
    Base exception for all query generation errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error code (e.g., "DATABASE_CONNECTION_ERROR")
        http_status: HTTP status code to return (default: 500)
        details: Optional dictionary with additional error context
    """

    error_code: str = "INTERNAL_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        http_status: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        if http_status:
            self.http_status = http_status

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Client Errors (4xx)
# =============================================================================


class ValidationError(QueryGenError):
    """
    Raised when input validation fails.

    HTTP Status: 422 Unprocessable Entity

    Examples:
        - Empty prompt
        - Malformed schema document
    """

    error_code = "VALIDATION_ERROR"
    http_status = 422


class BadRequestError(QueryGenError):
    """
    Raised when the request cannot be served as given.

    HTTP Status: 400 Bad Request

    Examples:
        - Persisting a dataset without a tenant id
    """

    error_code = "BAD_REQUEST"
    http_status = 400


class NotFoundError(QueryGenError):
    """
    Raised when a requested resource is not found.

    HTTP Status: 404 Not Found

    Examples:
        - Unknown dataset id
    """

    error_code = "NOT_FOUND"
    http_status = 404


class PermissionDeniedError(QueryGenError):
    """
    Raised when the caller lacks a permission needed to read a dataset.

    HTTP Status: 403 Forbidden

    The message never names the protected tables.
    """

    error_code = "PERMISSION_DENIED"
    http_status = 403


# =============================================================================
# Configuration Errors (5xx)
# =============================================================================


class ConfigurationError(QueryGenError):
    """Raised when configuration is invalid or missing."""

    error_code = "CONFIGURATION_ERROR"
    http_status = 500


# =============================================================================
# Database Errors (5xx)
# =============================================================================


class DatabaseError(QueryGenError):
    """
    Base class for database-related errors.

    HTTP Status: 503 Service Unavailable
    """

    error_code = "DATABASE_ERROR"
    http_status = 503


class DatabaseConnectionError(DatabaseError):
    """
    Raised when database connection fails.

    Examples:
        - Connection timeout
        - Authentication failure
    """

    error_code = "DATABASE_CONNECTION_ERROR"
    http_status = 503


class DatabaseQueryError(DatabaseError):
    """
    Raised when database query execution fails.

    HTTP Status: 500 Internal Server Error

    Examples:
        - SQL syntax error
        - Table/column not found
        - Query timeout

    The driver message is kept verbatim; the syntactic validator hands it
    to the error triage prompt.
    """

    error_code = "DATABASE_QUERY_ERROR"
    http_status = 500


# =============================================================================
# Schema Errors (5xx)
# =============================================================================


class SchemaError(QueryGenError):
    """
    Raised when the schema document cannot be loaded or is inconsistent.

    Examples:
        - Foreign key referencing an unknown table
        - Unreadable YAML
    """

    error_code = "SCHEMA_ERROR"
    http_status = 500


# =============================================================================
# Retrieval Errors (5xx)
# =============================================================================


class VectorStoreError(QueryGenError):
    """
    Raised when the query cache similarity store fails.

    HTTP Status: 503 Service Unavailable
    """

    error_code = "VECTOR_STORE_ERROR"
    http_status = 503


class KnowledgeGraphError(QueryGenError):
    """
    Raised when the knowledge graph cannot be seeded, loaded or queried.

    Examples:
        - Serialized graph with an unknown node type
        - Edge pointing at a missing node
    """

    error_code = "KNOWLEDGE_GRAPH_ERROR"
    http_status = 500


# =============================================================================
# Model Provider Errors (5xx)
# =============================================================================


class LLMError(QueryGenError):
    """
    Raised when LLM operations fail.

    HTTP Status: 503 Service Unavailable
    """

    error_code = "LLM_ERROR"
    http_status = 503


class EmbeddingError(QueryGenError):
    """
    Raised when embedding operations fail.

    HTTP Status: 503 Service Unavailable
    """

    error_code = "EMBEDDING_ERROR"
    http_status = 503


# =============================================================================
# Workflow Errors (5xx)
# =============================================================================


class WorkflowError(QueryGenError):
    """
    Raised when the workflow itself is misused or misconfigured.

    Examples:
        - Persisting a dataset without generated SQL
        - A stage routed to an unregistered stage
        - Step guard exceeded
    """

    error_code = "WORKFLOW_ERROR"
    http_status = 500


class OperationCancelledError(QueryGenError):
    """
    Raised when the abort signal of a run fires.

    HTTP Status: 499 Client Closed Request
    """

    error_code = "OPERATION_CANCELLED"
    http_status = 499


# =============================================================================
# Storage Errors (5xx)
# =============================================================================


class StorageError(QueryGenError):
    """Raised when storage operations fail."""

    error_code = "STORAGE_ERROR"
    http_status = 503


class StorageConnectionError(StorageError):
    """Raised when storage connection fails."""

    error_code = "STORAGE_CONNECTION_ERROR"
    http_status = 503


class StorageFileError(StorageError):
    """
    Raised when file operations fail.

    A missing object is reported with details={"status_code": 404}.
    """

    error_code = "STORAGE_FILE_ERROR"
    http_status = 500


# =============================================================================
# Service Unavailable (5xx)
# =============================================================================


class ServiceUnavailableError(QueryGenError):
    """
    Raised when a required service is not available.

    Examples:
        - Database client not connected
        - Knowledge graph not seeded within the readiness timeout
    """

    error_code = "SERVICE_UNAVAILABLE"
    http_status = 503
