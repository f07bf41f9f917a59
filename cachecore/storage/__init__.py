"""
Storage abstractions for the cache service.

Provides async clients for:
- Redis (caching)
"""

from .redis import RedisClient, RedisConfig

__all__ = [
    "RedisClient",
    "RedisConfig",
]
