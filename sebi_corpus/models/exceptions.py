"""
Custom exception hierarchy for corpus ingestion and retrieval
Each class maps to one failure class of the pipeline plus an HTTP status code
"""

from typing import Optional, Dict, Any


class CorpusAPIException(Exception):
    """
    Base exception for all corpus errors.
    Includes HTTP status code and structured error context.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        context: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize exception.

        Args:
            message: Human-readable error message
            status_code: HTTP status code
            error_code: Machine-readable error code
            context: Additional error context
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dict for JSON response"""
        return {
            "error": {
                "message": self.message,
                "code": self.error_code,
                "status": self.status_code,
                "context": self.context,
            }
        }


class DocumentAcquisitionException(CorpusAPIException):
    """
    Source document could not be read or parsed.
    Fatal to that single document only.
    HTTP 422 Unprocessable Entity
    """

    def __init__(
        self,
        message: str = "Failed to acquire document",
        source: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = context or {}
        if source:
            context["source"] = source

        super().__init__(
            message=message,
            status_code=422,
            error_code="ACQUISITION_ERROR",
            context=context,
        )


class DocumentValidationException(CorpusAPIException):
    """
    Document metadata or input text failed validation.
    Raised before any network call is made.
    HTTP 400 Bad Request
    """

    def __init__(
        self,
        message: str = "Invalid document",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = context or {}
        if field:
            context["field"] = field

        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            context=context,
        )


class EmbeddingProviderException(CorpusAPIException):
    """
    Embedding provider call failed.
    HTTP 502 Bad Gateway
    """

    def __init__(
        self,
        message: str = "Embedding provider call failed",
        provider: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = context or {}
        if provider:
            context["provider"] = provider

        super().__init__(
            message=message,
            status_code=502,
            error_code="EMBEDDING_PROVIDER_ERROR",
            context=context,
        )


class EmbeddingIncompleteException(CorpusAPIException):
    """
    A batch finished without a vector for every input.
    HTTP 500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "Embedding batch left unfilled slots",
        missing_indices: Optional[list] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = context or {}
        if missing_indices:
            context["missing_indices"] = missing_indices

        super().__init__(
            message=message,
            status_code=500,
            error_code="EMBEDDING_INCOMPLETE",
            context=context,
        )


class VectorStoreException(CorpusAPIException):
    """
    Vector store operation failed (upsert, search, scroll, delete).
    HTTP 502 Bad Gateway
    """

    def __init__(
        self,
        message: str = "Vector store operation failed",
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = context or {}
        if operation:
            context["operation"] = operation

        super().__init__(
            message=message,
            status_code=502,
            error_code="VECTOR_STORE_ERROR",
            context=context,
        )


class ConfigurationException(CorpusAPIException):
    """
    Required configuration is missing or invalid.
    HTTP 500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "Invalid configuration",
        setting: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = context or {}
        if setting:
            context["setting"] = setting

        super().__init__(
            message=message,
            status_code=500,
            error_code="CONFIGURATION_ERROR",
            context=context,
        )


class InsufficientPermissionsException(CorpusAPIException):
    """
    Caller lacks required permissions for the operation.
    HTTP 403 Forbidden
    """

    def __init__(
        self,
        message: str = "Insufficient permissions for this operation",
        required_permission: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = context or {}
        if required_permission:
            context["required_permission"] = required_permission

        super().__init__(
            message=message,
            status_code=403,
            error_code="INSUFFICIENT_PERMISSIONS",
            context=context,
        )
