"""
Device gateway: activation commands for machine controllers.

Commands are published as JSON on the Redis channel
"machines:{machine_id}:commands", which each controller subscribes to.
Without a Redis client (local development) commands are only logged.

Callers send commands after releasing the machine lock and never roll a
session back on failure; they record a system_error notification instead.
"""
import json
import logging
from typing import Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)

from vacuum_backend.exceptions import DeviceCommandError
from vacuum_backend.utils.date_formatter import Clock, now_local

logger = logging.getLogger(__name__)

COMMAND_ACTIVATE = "activate"
COMMAND_DEACTIVATE = "deactivate"


class RedisDeviceGateway:

    def __init__(self, redis_client: Optional[aioredis.Redis] = None, clock: Clock = now_local):
        self.redis_client = redis_client
        self.clock = clock

    @staticmethod
    def command_channel(machine_id: str) -> str:
        return f"machines:{machine_id}:commands"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        retry=retry_if_exception_type(RedisError),
        reraise=True
    )
    async def _publish(self, channel: str, message: str) -> int:
        return await self.redis_client.publish(channel, message)

    async def _send(self, machine_id: str, command: str, **params) -> None:
        payload = {
            "command": command,
            "machine_id": machine_id,
            "issued_at": self.clock().isoformat(),
            **params
        }

        if self.redis_client is None:
            logger.info(f"Device channel disabled, command logged only: {payload}")
            return

        try:
            receivers = await self._publish(self.command_channel(machine_id), json.dumps(payload))
        except RedisError as e:
            raise DeviceCommandError(machine_id, command, details=str(e)) from e

        if receivers == 0:
            raise DeviceCommandError(machine_id, command, details="no controller subscribed")

        logger.info(f"✅ Device command '{command}' delivered to machine {machine_id}")

    async def activate(self, machine_id: str, duration_seconds: int) -> None:
        """
        Start the unit for duration_seconds.

        Raises:
            DeviceCommandError: Command could not be delivered
        """
        await self._send(machine_id, COMMAND_ACTIVATE, duration_seconds=duration_seconds)

    async def deactivate(self, machine_id: str) -> None:
        """
        Stop the unit.

        Raises:
            DeviceCommandError: Command could not be delivered
        """
        await self._send(machine_id, COMMAND_DEACTIVATE)
