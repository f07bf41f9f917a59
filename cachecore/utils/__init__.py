"""
Utility modules for the cache service.

Provides common utilities for:
- Structured logging
- Error handling
"""

from .logging import setup_logging, get_logger
from .errors import (
    CacheServiceError,
    TransientUpstreamError,
    InvalidResponseShapeError,
    CacheUnavailableError,
    SnapshotInvalidError,
    ExhaustedRetriesError,
    ValidationError,
    ConfigurationError,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "CacheServiceError",
    "TransientUpstreamError",
    "InvalidResponseShapeError",
    "CacheUnavailableError",
    "SnapshotInvalidError",
    "ExhaustedRetriesError",
    "ValidationError",
    "ConfigurationError",
]
