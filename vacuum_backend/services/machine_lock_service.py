"""
Per-machine concurrency guard.

Two lock backends share the acquire/release/get_lock_owner contract:
- InMemoryLockService: single process, check-and-set without awaiting
- RedisLockService: multi-process (see redis_lock_service.py)

MachineLockGuard wraps either one in an async context manager:

    async with guard.hold(machine_id, "create_session"):
        ...  # critical section, no external waits in here

Acquisition fails fast with MachineBusyError; locks expire after a TTL.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional, Protocol

from redis.exceptions import RedisError

from vacuum_backend.config import config
from vacuum_backend.exceptions import MachineBusyError
from vacuum_backend.utils.date_formatter import Clock, now_local

logger = logging.getLogger(__name__)


class LockBackend(Protocol):
    async def acquire(self, machine_id: str, owner: str, ttl_seconds: Optional[int] = None) -> str: ...

    async def release(self, machine_id: str, token: str) -> bool: ...

    async def get_lock_owner(self, machine_id: str) -> Optional[str]: ...


@dataclass
class _HeldLock:
    token: str
    owner: str
    expires_at: datetime


class InMemoryLockService:
    """
    Process-local lock map.

    acquire() never awaits between the check and the set, so on a single
    event loop the check-and-set is atomic.
    """

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Clock = now_local):
        self.default_ttl = ttl_seconds or config.MACHINE_LOCK_TTL_SECONDS
        self.clock = clock
        self._locks: dict[str, _HeldLock] = {}

    def _current(self, machine_id: str) -> Optional[_HeldLock]:
        held = self._locks.get(machine_id)
        if held is not None and held.expires_at <= self.clock():
            logger.warning(
                f"⚠️ Lock on {machine_id} held by {held.owner} expired without release"
            )
            del self._locks[machine_id]
            return None
        return held

    async def acquire(self, machine_id: str, owner: str, ttl_seconds: Optional[int] = None) -> str:
        """
        Raises:
            MachineBusyError: Lock held and not expired
        """
        held = self._current(machine_id)
        if held is not None:
            raise MachineBusyError(
                machine_id,
                reason="Machine is locked by another operation",
                holder=held.owner
            )

        token = str(uuid.uuid4())
        ttl = ttl_seconds or self.default_ttl
        self._locks[machine_id] = _HeldLock(
            token=token,
            owner=owner,
            expires_at=self.clock() + timedelta(seconds=ttl)
        )
        logger.debug(f"Lock acquired: {machine_id} by {owner} (TTL: {ttl}s)")
        return token

    async def release(self, machine_id: str, token: str) -> bool:
        held = self._locks.get(machine_id)
        if held is None or held.token != token:
            logger.warning(f"⚠️ Lock not released: {machine_id} - expired or owned by another holder")
            return False
        del self._locks[machine_id]
        logger.debug(f"Lock released: {machine_id}")
        return True

    async def get_lock_owner(self, machine_id: str) -> Optional[str]:
        held = self._current(machine_id)
        return held.owner if held else None


class MachineLockGuard:
    """
    Exclusive region per machine on top of a lock backend.
    """

    def __init__(self, backend: LockBackend):
        self.backend = backend

    @asynccontextmanager
    async def hold(self, machine_id: str, owner: str) -> AsyncIterator[str]:
        """
        Hold the machine lock for the duration of the block.

        Args:
            machine_id: Machine to lock
            owner: Operation label shown to competing callers

        Yields:
            Lock token

        Raises:
            MachineBusyError: Another operation holds the lock

        A release that fails is logged; the lock then lapses with its TTL and
        whatever the block raised is what the caller sees.
        """
        token = await self.backend.acquire(machine_id, owner)
        try:
            yield token
        finally:
            try:
                await self.backend.release(machine_id, token)
            except RedisError as e:
                logger.error(f"❌ Could not release lock {machine_id} ({owner}), left to TTL: {e}")

    async def get_lock_owner(self, machine_id: str) -> Optional[str]:
        return await self.backend.get_lock_owner(machine_id)
