"""
Redis lock service for per-machine critical sections across processes.

Implements the distributed locking pattern with Redis SET NX EX:
- SET NX EX: atomic acquisition with automatic expiration, so a crashed
  holder cannot wedge a machine
- Lua script: release only if the stored value is still ours
- Lock tokens: UUID-based, returned to the holder for release

Acquisition never waits: a held lock raises MachineBusyError immediately.
"""
import logging
import uuid
from typing import Optional
from redis import asyncio as aioredis
from redis.exceptions import RedisError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)

from vacuum_backend.config import config
from vacuum_backend.exceptions import MachineBusyError

logger = logging.getLogger(__name__)

# Lua script for safe lock release with ownership verification
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisLockService:
    """
    Atomic Redis lock operations keyed by machine id.

    Attributes:
        redis: Async Redis client instance
        default_ttl: Lock TTL in seconds
    """

    def __init__(self, redis_client: aioredis.Redis, ttl_seconds: Optional[int] = None):
        """
        Args:
            redis_client: Connected async Redis client (RedisRepository.get_client())
            ttl_seconds: Lock TTL (defaults to MACHINE_LOCK_TTL_SECONDS)

        Warning:
            The client must be connected before the first lock request;
            the connection is opened in the FastAPI startup event.
        """
        self.redis = redis_client
        self.default_ttl = ttl_seconds or config.MACHINE_LOCK_TTL_SECONDS

    def _lock_key(self, machine_id: str) -> str:
        """Format: "machine_lock:{machine_id}"."""
        return f"machine_lock:{machine_id}"

    def _lock_value(self, owner: str) -> str:
        """
        Unique lock value: "{uuid4}:{owner}".

        The full value is the token handed back to the holder.
        """
        return f"{uuid.uuid4()}:{owner}"

    @staticmethod
    def _parse_owner(lock_value: str) -> str:
        parts = lock_value.split(":", 1)
        return parts[1] if len(parts) == 2 else lock_value

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(RedisError),
        reraise=True
    )
    async def acquire(self, machine_id: str, owner: str, ttl_seconds: Optional[int] = None) -> str:
        """
        Acquire the machine lock or fail fast.

        Args:
            machine_id: Machine identifier
            owner: Operation name for diagnostics (e.g. "create_session")
            ttl_seconds: Override of the default TTL

        Returns:
            Lock token for release()

        Raises:
            MachineBusyError: Lock held by someone else
            RedisError: Redis failure (after retries)
        """
        lock_key = self._lock_key(machine_id)
        lock_value = self._lock_value(owner)
        ttl = ttl_seconds or self.default_ttl

        try:
            acquired = await self.redis.set(
                lock_key,
                lock_value,
                nx=True,  # Only set if key doesn't exist
                ex=ttl    # Auto-expire after TTL seconds
            )

            if not acquired:
                holder = await self.get_lock_owner(machine_id)
                raise MachineBusyError(
                    machine_id,
                    reason="Machine is locked by another operation",
                    holder=holder
                )

            logger.debug(f"Lock acquired: {machine_id} by {owner} (TTL: {ttl}s)")
            return lock_value

        except MachineBusyError:
            # Re-raise contention without retry
            raise
        except RedisError as e:
            logger.warning(f"Redis error acquiring lock for {machine_id}: {e}")
            raise

    async def release(self, machine_id: str, token: str) -> bool:
        """
        Release the lock only if token still owns it.

        Returns:
            True if released, False if the lock expired or changed hands

        Raises:
            RedisError: If Redis operation fails
        """
        lock_key = self._lock_key(machine_id)

        try:
            result = await self.redis.eval(RELEASE_SCRIPT, 1, lock_key, token)
            released = result == 1

            if released:
                logger.debug(f"Lock released: {machine_id}")
            else:
                logger.warning(
                    f"⚠️ Lock not released: {machine_id} - expired or owned by another holder"
                )
            return released

        except RedisError as e:
            logger.error(f"Redis error releasing lock for {machine_id}: {e}")
            raise

    async def get_lock_owner(self, machine_id: str) -> Optional[str]:
        """
        Owner label of the current lock, None when free.
        """
        try:
            value = await self.redis.get(self._lock_key(machine_id))
        except RedisError as e:
            logger.warning(f"Redis error reading lock owner for {machine_id}: {e}")
            return None
        return self._parse_owner(value) if value else None
