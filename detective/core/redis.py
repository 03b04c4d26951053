"""Redis access for storage locks and URL Metric notifications.

Two kinds of data live in Redis:
    - storage lock timestamps, one short-lived key per client
    - stored notifications, published on ``settings.url_metrics_event_channel``

Values are JSON encoded so lock timestamps come back as floats.
"""

import asyncio
import json
import random
from collections.abc import AsyncGenerator
from typing import Any, cast

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from detective.core.config import get_settings
from detective.core.logging import get_logger, sanitize_error

logger = get_logger(__name__)

CONNECT_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 1.0
BACKOFF_CAP_SECONDS = 30.0


def _backoff_delay(attempt: int) -> float:
    """Exponential delay for a 1-indexed attempt, plus up to 25% jitter."""
    delay = min(BACKOFF_BASE_SECONDS * 2 ** (attempt - 1), BACKOFF_CAP_SECONDS)
    return delay * (1 + random.uniform(0, 0.25))  # noqa: S311


class RedisClient:
    """Pooled async Redis client with JSON-valued helpers."""

    def __init__(self, redis_url: str | None = None):
        self._redis_url = redis_url or get_settings().redis_url
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = None

    async def connect(self) -> None:
        """Connect and ping, retrying with backoff.

        Raises:
            redis.exceptions.ConnectionError: If every attempt fails
            redis.exceptions.TimeoutError: If every attempt times out
        """
        for attempt in range(1, CONNECT_ATTEMPTS + 1):
            self._pool = ConnectionPool.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                health_check_interval=30,
                max_connections=10,
            )
            self._client = Redis(connection_pool=self._pool)
            try:
                await self._client.ping()  # type: ignore
            except (ConnectionError, TimeoutError) as e:
                logger.warning(
                    f"Redis connection attempt {attempt}/{CONNECT_ATTEMPTS} failed: "
                    f"{sanitize_error(e)}"
                )
                if attempt == CONNECT_ATTEMPTS:
                    raise
                await asyncio.sleep(_backoff_delay(attempt))
            else:
                logger.info("Connected to Redis")
                return

    async def disconnect(self) -> None:
        try:
            if self._client is not None:
                await self._client.aclose()
            if self._pool is not None:
                await self._pool.disconnect()
        except RedisError as e:
            logger.warning(f"Error while closing Redis connection: {sanitize_error(e)}")
        finally:
            self._client = None
            self._pool = None

    def _ensure_connected(self) -> Redis:
        if self._client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    async def ping(self) -> bool:
        """Whether Redis answers a PING; used by the readiness probe."""
        try:
            return bool(await self._ensure_connected().ping())  # type: ignore
        except (RedisError, RuntimeError) as e:
            logger.warning(f"Redis ping failed: {sanitize_error(e)}")
            return False

    async def publish(self, channel: str, message: Any) -> int:
        """Publish a message, JSON encoding anything that is not a string.

        Returns:
            Number of subscribers that received the message
        """
        payload = message if isinstance(message, str) else json.dumps(message)
        return cast("int", await self._ensure_connected().publish(channel, payload))

    async def get(self, key: str) -> Any | None:
        """Get a JSON-decoded value, the raw string if it is not JSON, or None."""
        value = await self._ensure_connected().get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    async def set(self, key: str, value: Any, expire: int | None = None) -> bool:
        """Store a JSON-encoded value with an optional expiry in seconds."""
        payload = value if isinstance(value, str) else json.dumps(value)
        return cast("bool", await self._ensure_connected().set(key, payload, ex=expire))

    async def delete(self, *keys: str) -> int:
        return cast("int", await self._ensure_connected().delete(*keys))


_redis_client: RedisClient | None = None


async def init_redis() -> RedisClient:
    """Create and connect the process-wide client on first use."""
    global _redis_client  # noqa: PLW0603

    if _redis_client is None:
        client = RedisClient()
        await client.connect()
        _redis_client = client
    return _redis_client


async def get_redis() -> AsyncGenerator[RedisClient]:
    """FastAPI dependency yielding the process-wide Redis client."""
    yield await init_redis()


async def close_redis() -> None:
    global _redis_client  # noqa: PLW0603

    if _redis_client is not None:
        await _redis_client.disconnect()
        _redis_client = None
