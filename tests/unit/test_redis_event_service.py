"""
Unit tests for RedisEventService - realtime status broadcasts.

Tests validate:
- Event payload shape (event_type, timestamp, fields)
- Channel name "machines:updates"
- Best effort: Redis failures and a missing client return False
"""
import json
import pytest
from unittest.mock import AsyncMock
from redis.exceptions import RedisError

from vacuum_backend.models.enums import MachineStatus, SessionStatus, TransitionCause, PaymentMethod, TerminationCause
from vacuum_backend.models.machine import Machine
from vacuum_backend.models.session import UsageSession
from vacuum_backend.services.redis_event_service import (
    RedisEventService,
    MACHINE_STATUS_CHANGED,
    SESSION_STATUS_CHANGED
)


@pytest.fixture
def mock_redis():
    redis_mock = AsyncMock()
    redis_mock.publish.return_value = 2
    return redis_mock


@pytest.fixture
def event_service(mock_redis, clock):
    return RedisEventService(mock_redis, clock=clock)


@pytest.fixture
def machine():
    return Machine(id="m-1", code="VAC-001", status=MachineStatus.MAINTENANCE, maintenance_interval_hours=100,
                   current_operating_minutes=6000)


@pytest.mark.asyncio
async def test_publish_machine_status(event_service, mock_redis, machine):
    result = await event_service.publish_machine_status(
        machine, MachineStatus.IN_USE, TransitionCause.MAINTENANCE_THRESHOLD
    )

    assert result is True
    channel, message = mock_redis.publish.call_args.args
    assert channel == "machines:updates"

    payload = json.loads(message)
    assert payload["event_type"] == MACHINE_STATUS_CHANGED
    assert payload["machine_id"] == "m-1"
    assert payload["machine_code"] == "VAC-001"
    assert payload["previous_status"] == "in_use"
    assert payload["status"] == "maintenance"
    assert payload["cause"] == "maintenance_threshold"
    assert payload["operating_minutes"] == 6000
    assert payload["override_active"] is False
    assert payload["timestamp"].startswith("2026-01-10T10:00:00")


@pytest.mark.asyncio
async def test_publish_session_status(event_service, mock_redis):
    session = UsageSession(
        id="s-1",
        user_id="u-1",
        machine_id="m-1",
        requested_duration_minutes=10,
        cost="10.00",
        payment_method=PaymentMethod.BALANCE,
        status=SessionStatus.COMPLETED,
        termination_cause=TerminationCause.USER_STOP
    )

    result = await event_service.publish_session_status(session, SessionStatus.ACTIVE)

    assert result is True
    payload = json.loads(mock_redis.publish.call_args.args[1])
    assert payload["event_type"] == SESSION_STATUS_CHANGED
    assert payload["previous_status"] == "active"
    assert payload["status"] == "completed"
    assert payload["termination_cause"] == "user_stop"


@pytest.mark.asyncio
async def test_publish_session_created_has_no_previous(event_service, mock_redis):
    session = UsageSession(
        user_id="u-1",
        machine_id="m-1",
        requested_duration_minutes=5,
        cost="5.00",
        payment_method=PaymentMethod.PIX
    )

    await event_service.publish_session_status(session, None)

    payload = json.loads(mock_redis.publish.call_args.args[1])
    assert payload["previous_status"] is None
    assert payload["status"] == "pending"
    assert payload["termination_cause"] is None


@pytest.mark.asyncio
async def test_publish_redis_error_returns_false(event_service, mock_redis, machine):
    mock_redis.publish.side_effect = RedisError("connection lost")

    result = await event_service.publish_machine_status(machine, MachineStatus.ONLINE, TransitionCause.ADMIN)

    assert result is False


@pytest.mark.asyncio
async def test_publish_without_client_returns_false(machine):
    service = RedisEventService(None)

    assert await service.publish_machine_status(machine, MachineStatus.ONLINE, TransitionCause.ADMIN) is False
