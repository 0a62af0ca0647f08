"""
Redis event publisher for realtime machine and session updates.

Publishes status change events to the "machines:updates" pub/sub channel,
which the SSE endpoint streams to dashboards and customer screens.

Publishing is best effort: a failure is logged and reported as False, never
raised, so a broken realtime channel cannot undo a committed transition.

Usage:
    event_service = RedisEventService(redis_client)
    await event_service.publish_machine_status(machine, previous, cause)
"""
import json
import logging
from typing import Optional, Dict, Any

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from vacuum_backend.models.enums import MachineStatus, SessionStatus, TransitionCause
from vacuum_backend.models.machine import Machine
from vacuum_backend.models.session import UsageSession
from vacuum_backend.utils.date_formatter import Clock, now_local

logger = logging.getLogger(__name__)

MACHINE_STATUS_CHANGED = "machine_status_changed"
SESSION_STATUS_CHANGED = "session_status_changed"


class RedisEventService:
    """
    Publishes JSON events to the realtime channel.

    Attributes:
        redis_client: Async Redis client, or None when running without Redis
        channel: Redis channel name
    """

    CHANNEL = "machines:updates"

    def __init__(self, redis_client: Optional[aioredis.Redis] = None, clock: Clock = now_local):
        self.redis_client = redis_client
        self.channel = self.CHANNEL
        self.clock = clock

    async def publish(self, event_type: str, payload: Dict[str, Any]) -> bool:
        """
        Publish one event.

        Args:
            event_type: Event name (machine_status_changed, session_status_changed)
            payload: Event body; timestamp is added

        Returns:
            bool: True if published, False otherwise
        """
        if self.redis_client is None:
            logger.debug(f"Realtime channel disabled, dropping {event_type} event")
            return False

        try:
            event_payload = {
                "event_type": event_type,
                "timestamp": self.clock().isoformat(),
                **payload
            }
            message = json.dumps(event_payload, default=str)

            subscribers = await self.redis_client.publish(self.channel, message)
            logger.debug(f"Published {event_type} event to {subscribers} subscribers")
            return True

        except RedisError as e:
            logger.error(f"Failed to publish {event_type} event: {str(e)}")
            return False
        except (TypeError, ValueError) as e:
            logger.error(f"Unserializable {event_type} event: {str(e)}")
            return False

    async def publish_machine_status(
        self,
        machine: Machine,
        previous: MachineStatus,
        cause: TransitionCause
    ) -> bool:
        """Broadcast a machine status transition."""
        return await self.publish(
            MACHINE_STATUS_CHANGED,
            {
                "machine_id": machine.id,
                "machine_code": machine.code,
                "previous_status": previous.value,
                "status": machine.status.value,
                "cause": cause.value,
                "operating_minutes": machine.current_operating_minutes,
                "override_active": machine.override.active
            }
        )

    async def publish_session_status(self, session: UsageSession, previous: Optional[SessionStatus]) -> bool:
        """Broadcast a session status change (previous is None on creation)."""
        return await self.publish(
            SESSION_STATUS_CHANGED,
            {
                "session_id": session.id,
                "machine_id": session.machine_id,
                "user_id": session.user_id,
                "previous_status": previous.value if previous else None,
                "status": session.status.value,
                "termination_cause": session.termination_cause.value if session.termination_cause else None
            }
        )
