"""
Unit tests for RedisDeviceGateway - controller activation commands.
"""
import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import RedisError

from vacuum_backend.exceptions import DeviceCommandError
from vacuum_backend.services.device_gateway import RedisDeviceGateway


@pytest.fixture
def mock_redis():
    redis_mock = AsyncMock()
    redis_mock.publish.return_value = 1
    return redis_mock


@pytest.fixture
def gateway(mock_redis, clock):
    return RedisDeviceGateway(mock_redis, clock=clock)


@pytest.mark.asyncio
async def test_activate_publishes_command(gateway, mock_redis):
    await gateway.activate("m-1", 600)

    channel, message = mock_redis.publish.call_args.args
    assert channel == "machines:m-1:commands"
    payload = json.loads(message)
    assert payload["command"] == "activate"
    assert payload["machine_id"] == "m-1"
    assert payload["duration_seconds"] == 600
    assert payload["issued_at"].startswith("2026-01-10T10:00:00")


@pytest.mark.asyncio
async def test_deactivate_publishes_command(gateway, mock_redis):
    await gateway.deactivate("m-1")

    payload = json.loads(mock_redis.publish.call_args.args[1])
    assert payload["command"] == "deactivate"
    assert "duration_seconds" not in payload


@pytest.mark.asyncio
async def test_no_subscriber_is_an_error(gateway, mock_redis):
    mock_redis.publish.return_value = 0

    with pytest.raises(DeviceCommandError) as exc_info:
        await gateway.activate("m-1", 600)

    assert exc_info.value.data["details"] == "no controller subscribed"


@pytest.mark.asyncio
async def test_redis_failure_wrapped(gateway, mock_redis):
    mock_redis.publish.side_effect = RedisError("connection reset")

    with pytest.raises(DeviceCommandError) as exc_info:
        await gateway.deactivate("m-1")

    assert exc_info.value.data["command"] == "deactivate"
    # Retried before giving up
    assert mock_redis.publish.call_count == 3


@pytest.mark.asyncio
async def test_without_redis_commands_are_logged_only(clock):
    gateway = RedisDeviceGateway(None, clock=clock)

    await gateway.activate("m-1", 300)
