"""HTTP API for the cache service."""

from .internal import InternalAPI

__all__ = ["InternalAPI"]
