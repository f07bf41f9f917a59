"""Periodic refresh scheduling."""

from .scheduler import RefreshScheduler

__all__ = ["RefreshScheduler"]
