"""
Custom error classes for the caching layer.

Provides structured error handling with error codes,
context information, and proper exception chaining.
"""

from typing import Optional, Dict, Any
from dataclasses import dataclass


@dataclass
class ErrorContext:
    """Error context information."""
    service: str
    operation: str
    key: Optional[str] = None
    provider: Optional[str] = None
    metadata: Dict[str, Any] = None

    def __post_init__(self):
        if self.metadata is None:
            self.metadata = {}


class CacheServiceError(Exception):
    """Base exception for cache service errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        result = {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }

        if self.context:
            result["context"] = {
                "service": self.context.service,
                "operation": self.context.operation,
                "key": self.context.key,
                "provider": self.context.provider,
                "metadata": self.context.metadata,
            }

        return result


class TransientUpstreamError(CacheServiceError):
    """Upstream call failed in a way that is worth retrying (transport error, non-2xx)."""

    def __init__(
        self,
        message: str,
        upstream: Optional[str] = None,
        status: Optional[int] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="TRANSIENT_UPSTREAM",
            context=context,
            details=details or {}
        )
        self.upstream = upstream
        self.status = status

        if upstream:
            self.details["upstream"] = upstream
        if status is not None:
            self.details["status"] = status


class InvalidResponseShapeError(CacheServiceError):
    """Upstream answered, but the payload cannot be used."""

    def __init__(
        self,
        message: str,
        upstream: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="INVALID_RESPONSE_SHAPE",
            context=context,
            details=details or {}
        )
        self.upstream = upstream

        if upstream:
            self.details["upstream"] = upstream


class CacheUnavailableError(CacheServiceError):
    """Error raised when the cache store cannot be reached."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        key: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="CACHE_UNAVAILABLE",
            context=context,
            details=details or {}
        )
        self.operation = operation
        self.key = key

        if operation:
            self.details["operation"] = operation
        if key:
            self.details["key"] = key


class SnapshotInvalidError(CacheServiceError):
    """Error raised when a tier snapshot fails validation."""

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="SNAPSHOT_INVALID",
            context=context,
            details=details or {}
        )
        self.reason = reason

        if reason:
            self.details["reason"] = reason


class ExhaustedRetriesError(CacheServiceError):
    """Error raised when a value could not be fetched and nothing cached can stand in."""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="EXHAUSTED_RETRIES",
            context=context,
            details=details or {}
        )
        self.key = key

        if key:
            self.details["key"] = key


class ValidationError(CacheServiceError):
    """Error raised when request validation fails."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            context=context,
            details=details or {}
        )
        self.field = field
        self.value = value

        if field:
            self.details["field"] = field
        if value is not None:
            self.details["value"] = str(value)


class ConfigurationError(CacheServiceError):
    """Error raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            context=context,
            details=details or {}
        )
        self.config_key = config_key
        self.config_value = config_value

        if config_key:
            self.details["config_key"] = config_key
        if config_value is not None:
            self.details["config_value"] = str(config_value)
