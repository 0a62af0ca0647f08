"""
Unit tests for InMemoryLockService and MachineLockGuard.

Tests validate:
- Fail-fast acquisition with the holder reported
- Independent machines do not contend
- TTL expiry frees a lock whose holder never released it
- Release only by the token owner
- hold() releases on success and on exception
- A failing release never hides the error raised inside the block
"""
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import RedisError

from vacuum_backend.exceptions import MachineBusyError, PaymentDeclinedError
from vacuum_backend.services.machine_lock_service import InMemoryLockService, MachineLockGuard


@pytest.fixture
def backend(clock):
    return InMemoryLockService(ttl_seconds=30, clock=clock)


@pytest.fixture
def guard(backend):
    return MachineLockGuard(backend)


@pytest.mark.asyncio
async def test_acquire_and_owner(backend):
    token = await backend.acquire("m-1", "create_session:u-1")

    assert token
    assert await backend.get_lock_owner("m-1") == "create_session:u-1"


@pytest.mark.asyncio
async def test_second_acquire_fails_fast(backend):
    await backend.acquire("m-1", "create_session:u-1")

    with pytest.raises(MachineBusyError) as exc_info:
        await backend.acquire("m-1", "create_session:u-2")

    assert exc_info.value.data["holder"] == "create_session:u-1"


@pytest.mark.asyncio
async def test_other_machine_not_blocked(backend):
    await backend.acquire("m-1", "a")
    token = await backend.acquire("m-2", "b")

    assert token


@pytest.mark.asyncio
async def test_lock_expires_after_ttl(backend, clock):
    await backend.acquire("m-1", "crashed_holder")

    clock.advance(seconds=31)

    assert await backend.get_lock_owner("m-1") is None
    assert await backend.acquire("m-1", "next_holder")


@pytest.mark.asyncio
async def test_release_with_foreign_token_ignored(backend):
    await backend.acquire("m-1", "owner")

    assert await backend.release("m-1", "not-the-token") is False
    assert await backend.get_lock_owner("m-1") == "owner"


@pytest.mark.asyncio
async def test_expired_holder_cannot_release_new_lock(backend, clock):
    old_token = await backend.acquire("m-1", "slow")
    clock.advance(seconds=31)
    await backend.acquire("m-1", "fast")

    assert await backend.release("m-1", old_token) is False
    assert await backend.get_lock_owner("m-1") == "fast"


@pytest.mark.asyncio
async def test_hold_releases_after_block(guard, backend):
    async with guard.hold("m-1", "admin_status:a-1") as token:
        assert token
        assert await guard.get_lock_owner("m-1") == "admin_status:a-1"

    assert await backend.get_lock_owner("m-1") is None


@pytest.mark.asyncio
async def test_hold_releases_on_exception(guard, backend):
    with pytest.raises(RuntimeError):
        async with guard.hold("m-1", "terminate_session"):
            raise RuntimeError("boom")

    assert await backend.get_lock_owner("m-1") is None


@pytest.mark.asyncio
async def test_nested_hold_same_machine_is_busy(guard):
    async with guard.hold("m-1", "outer"):
        with pytest.raises(MachineBusyError):
            async with guard.hold("m-1", "inner"):
                pass


@pytest.fixture
def failing_release_guard():
    backend = AsyncMock()
    backend.acquire.return_value = "token-1"
    backend.release.side_effect = RedisError("connection reset")
    return MachineLockGuard(backend)


@pytest.mark.asyncio
async def test_release_error_does_not_mask_block_error(failing_release_guard):
    with pytest.raises(PaymentDeclinedError) as exc_info:
        async with failing_release_guard.hold("m-1", "create_session:u-1"):
            raise PaymentDeclinedError("insufficient balance", "10.00")

    assert exc_info.value.error_code == "PAYMENT_DECLINED"
    failing_release_guard.backend.release.assert_awaited_once_with("m-1", "token-1")


@pytest.mark.asyncio
async def test_release_error_after_successful_block_is_logged(failing_release_guard, caplog):
    async with failing_release_guard.hold("m-1", "admin_status:a-1") as token:
        assert token == "token-1"

    assert "left to TTL" in caplog.text
