"""Redis async client wrapper for caching.

Provides high-level interface for Redis operations
with connection pooling and error handling.
"""

from typing import Any, Iterable, List, Optional, Tuple
from dataclasses import dataclass
import json
import structlog

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..utils.errors import CacheUnavailableError


logger = structlog.get_logger()


@dataclass
class RedisConfig:
    """Redis configuration."""
    url: str
    max_connections: int = 20
    timeout: int = 30
    retry_on_timeout: bool = True


class RedisClient:
    """
    Async Redis client with connection pooling.

    Values are stored as JSON. Every operation failure is logged and
    re-raised as ``CacheUnavailableError``.
    """

    def __init__(self, config: RedisConfig | str):
        if isinstance(config, str):
            config = RedisConfig(url=config)
        self.config = config
        self.logger = structlog.get_logger("redis-client")
        self.client: Optional[redis.Redis] = None
        self.is_connected: bool = False

    async def connect(self) -> None:
        """Connect to Redis."""
        if self.client:
            return

        self.client = redis.from_url(
            self.config.url,
            decode_responses=True,
            max_connections=self.config.max_connections,
            socket_timeout=self.config.timeout,
            retry_on_timeout=self.config.retry_on_timeout
        )

        try:
            await self.client.ping()
        except (RedisError, OSError) as e:
            await self.client.aclose()
            self.client = None
            self.logger.error("Redis connect error", error=str(e))
            raise CacheUnavailableError("Redis unreachable", operation="connect") from e
        self.is_connected = True
        self.logger.info("Connected to Redis")

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self.client:
            await self.client.aclose()
            self.client = None
            self.is_connected = False
            self.logger.info("Disconnected from Redis")

    # Alias for consistency with other clients
    async def close(self) -> None:
        """Close Redis connection."""
        await self.disconnect()

    async def get(self, key: str) -> Optional[Any]:
        """Get value by key, decoding JSON payloads."""
        if not self.client:
            await self.connect()

        try:
            value = await self.client.get(key)
        except (RedisError, OSError) as e:
            self.logger.error("Redis get error", error=str(e), key=key)
            raise CacheUnavailableError("Redis get failed", operation="get", key=key) from e

        if value is None:
            return None

        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value

        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Set value with optional TTL in seconds."""
        if not self.client:
            await self.connect()

        stored_value = value
        if not isinstance(value, (str, bytes)):
            stored_value = json.dumps(value)

        try:
            await self.client.set(key, stored_value, ex=ttl)
            self.logger.debug("Value set", key=key, ttl=ttl)
        except (RedisError, OSError) as e:
            self.logger.error("Redis set error", error=str(e), key=key)
            raise CacheUnavailableError("Redis set failed", operation="set", key=key) from e

    async def set_many(self, entries: Iterable[Tuple[str, Any, Optional[int]]]) -> int:
        """
        Write ``(key, value, ttl)`` entries in one MULTI/EXEC pipeline.

        Returns the number of entries written.
        """
        if not self.client:
            await self.connect()

        entries = list(entries)
        if not entries:
            return 0

        try:
            async with self.client.pipeline(transaction=True) as pipe:
                for key, value, ttl in entries:
                    stored_value = value
                    if not isinstance(value, (str, bytes)):
                        stored_value = json.dumps(value)
                    pipe.set(key, stored_value, ex=ttl)
                await pipe.execute()
            self.logger.debug("Pipeline executed", count=len(entries))
            return len(entries)
        except (RedisError, OSError) as e:
            self.logger.error("Redis pipeline error", error=str(e), count=len(entries))
            raise CacheUnavailableError("Redis pipeline failed", operation="pipeline") from e

    async def delete(self, key: str) -> int:
        """Delete key."""
        if not self.client:
            await self.connect()

        try:
            deleted = await self.client.delete(key)
            self.logger.debug("Key deleted", key=key, deleted=deleted)
            return deleted
        except (RedisError, OSError) as e:
            self.logger.error("Redis delete error", error=str(e), key=key)
            raise CacheUnavailableError("Redis delete failed", operation="delete", key=key) from e

    async def scan(self, cursor: int, match: str, count: int = 100) -> Tuple[int, List[str]]:
        """One SCAN step. A returned cursor of 0 signals the end of iteration."""
        if not self.client:
            await self.connect()

        try:
            next_cursor, keys = await self.client.scan(cursor=cursor, match=match, count=count)
            return int(next_cursor), list(keys)
        except (RedisError, OSError) as e:
            self.logger.error("Redis scan error", error=str(e), match=match, cursor=cursor)
            raise CacheUnavailableError("Redis scan failed", operation="scan") from e

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            if not self.client:
                await self.connect()
            result = await self.client.ping()
            return result is True
        except (RedisError, OSError, CacheUnavailableError) as e:
            self.logger.error("Redis health check failed", error=str(e))
            return False

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()
