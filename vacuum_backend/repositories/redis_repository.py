"""
Redis repository for connection pool management.

Redis backs three concerns: the distributed machine lock (LOCK_BACKEND=redis),
the realtime pub/sub channel consumed by SSE clients, and device command
channels listened to by the machine controllers.

Usage:
    redis_repo = RedisRepository()
    await redis_repo.connect()
    client = redis_repo.get_client()
    await redis_repo.disconnect()
"""
import logging
from typing import Optional
from redis import asyncio as aioredis
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)

from vacuum_backend.config import config

logger = logging.getLogger(__name__)

PUBSUB_MAX_CONNECTIONS = 50


class RedisRepository:
    """
    Owns two connection pools:
    1. Main pool for short-lived operations (locks, publish)
    2. Pubsub pool for long-lived SSE subscriptions, so streaming clients
       cannot starve lock operations

    One instance is created by the service container and shared.

    Attributes:
        client: Async Redis client for operations
        pubsub_client: Async Redis client for subscriptions
    """

    def __init__(self, url: Optional[str] = None):
        self.url = url or config.REDIS_URL
        self.client: Optional[aioredis.Redis] = None
        self.pubsub_client: Optional[aioredis.Redis] = None
        self._pool: Optional[aioredis.ConnectionPool] = None
        self._pubsub_pool: Optional[aioredis.ConnectionPool] = None

    @property
    def is_connected(self) -> bool:
        return self.client is not None

    def get_client(self) -> Optional[aioredis.Redis]:
        """
        Main Redis client, or None before connect() completed.

        Warning:
            Callers must handle None (Redis optional in memory lock mode).
        """
        if self.client is None:
            logger.warning(
                "Redis client requested but not yet connected. "
                "Ensure FastAPI startup event has completed."
            )
        return self.client

    def get_pubsub_client(self) -> Optional[aioredis.Redis]:
        """Dedicated client for pub/sub subscriptions (SSE)."""
        if self.pubsub_client is None:
            logger.warning("Redis pubsub client requested but not yet connected.")
        return self.pubsub_client

    def _build_pool(self, max_connections: int) -> aioredis.ConnectionPool:
        return aioredis.ConnectionPool.from_url(
            self.url,
            max_connections=max_connections,
            decode_responses=True,
            encoding='utf-8',
            socket_connect_timeout=config.REDIS_SOCKET_CONNECT_TIMEOUT,
            socket_timeout=config.REDIS_SOCKET_TIMEOUT,
            socket_keepalive=True,
            retry_on_timeout=True,
            health_check_interval=config.REDIS_HEALTH_CHECK_INTERVAL
        )

    async def connect(self) -> None:
        """
        Create both pools and verify them with PING.

        Raises:
            RedisConnectionError: If connection fails after retries
        """
        if self.client is not None and self.pubsub_client is not None:
            logger.warning("Redis clients already connected, skipping reconnect")
            return

        try:
            logger.info(
                f"Connecting to Redis at {self.url} "
                f"(main pool: {config.REDIS_POOL_MAX_CONNECTIONS}, pubsub pool: {PUBSUB_MAX_CONNECTIONS})"
            )

            self._pool = self._build_pool(config.REDIS_POOL_MAX_CONNECTIONS)
            self._pubsub_pool = self._build_pool(PUBSUB_MAX_CONNECTIONS)

            self.client = aioredis.Redis(connection_pool=self._pool)
            self.pubsub_client = aioredis.Redis(connection_pool=self._pubsub_pool)

            await self._verify_connection(self.client, "main")
            await self._verify_connection(self.pubsub_client, "pubsub")

            logger.info("✅ Redis connections established successfully")

        except RedisConnectionError as e:
            logger.error(f"❌ Failed to connect to Redis: {e}")
            raise
        except Exception as e:
            logger.error(f"❌ Unexpected error connecting to Redis: {e}")
            raise RedisConnectionError(f"Redis connection failed: {e}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(RedisConnectionError),
        reraise=True
    )
    async def _verify_connection(self, client: aioredis.Redis, name: str) -> None:
        """
        PING a client (with retry).

        Raises:
            RedisConnectionError: If PING fails after 3 attempts
        """
        try:
            response = await client.ping()
            if not response:
                raise RedisConnectionError(f"{name} client PING returned False")
        except RedisConnectionError:
            raise
        except RedisError as e:
            logger.warning(f"Redis {name} client PING failed: {e}")
            raise RedisConnectionError(f"{name} client PING verification failed: {e}") from e

    async def disconnect(self) -> None:
        """
        Close clients and pools. Safe to call multiple times.
        """
        try:
            logger.info("Disconnecting from Redis...")

            if self.client is not None:
                await self.client.aclose()
                self.client = None

            if self.pubsub_client is not None:
                await self.pubsub_client.aclose()
                self.pubsub_client = None

            if self._pool:
                await self._pool.disconnect()
                self._pool = None

            if self._pubsub_pool:
                await self._pubsub_pool.disconnect()
                self._pubsub_pool = None

            logger.info("✅ Redis disconnected successfully")
        except RedisError as e:
            # Shutdown continues even if the server went away first
            logger.error(f"❌ Error disconnecting from Redis: {e}")

    async def health_check(self) -> dict:
        """
        Returns:
            {"status": "healthy"} or {"status": "unhealthy", "error": "..."}
        """
        if self.client is None:
            return {"status": "unhealthy", "error": "Redis client not connected"}

        try:
            await self.client.ping()
            return {"status": "healthy"}
        except RedisError as e:
            logger.warning(f"Redis health check failed: {e}")
            return {"status": "unhealthy", "error": str(e)}
