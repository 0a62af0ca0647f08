"""
SSE service for realtime machine and session updates.

Subscribes to the Redis "machines:updates" channel and yields Server-Sent
Events until the client disconnects.

Usage:
    from vacuum_backend.services.sse_service import event_generator
    from sse_starlette import EventSourceResponse

    return EventSourceResponse(event_generator(request, redis), ping=15, send_timeout=30)
"""
import json
import logging
import asyncio
from typing import AsyncGenerator, Dict, Any
from fastapi import Request
from redis import asyncio as aioredis

from vacuum_backend.services.redis_event_service import RedisEventService

logger = logging.getLogger(__name__)


async def event_generator(
    request: Request,
    redis: aioredis.Redis,
    channel: str = RedisEventService.CHANNEL
) -> AsyncGenerator[Dict[str, Any], None]:
    """
    Yield SSE events from the realtime channel.

    Polls with a 1 second timeout so client disconnects are noticed quickly.
    The SSE event name is the published event_type
    (machine_status_changed / session_status_changed).

    Args:
        request: FastAPI Request for disconnect detection
        redis: Async Redis client for the subscription
        channel: Channel to subscribe to

    Yields:
        {"event": event_type, "data": JSON string, "id": timestamp}
    """
    logger.info(f"SSE client connected - subscribing to {channel}")

    async with redis.pubsub() as pubsub:
        try:
            await pubsub.subscribe(channel)

            while True:
                if await request.is_disconnected():
                    logger.info("SSE client disconnected - cleaning up")
                    break

                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0
                )

                if message and message["type"] == "message":
                    try:
                        data = json.loads(message["data"])
                    except json.JSONDecodeError as e:
                        logger.warning(f"Malformed JSON in Redis message: {e}")
                        continue

                    yield {
                        "event": data.get("event_type", "update"),
                        "data": json.dumps(data),
                        "id": data.get("timestamp")
                    }

        except asyncio.CancelledError:
            logger.info("SSE stream cancelled - client disconnected")
            raise

        finally:
            logger.info("SSE subscription cleanup complete")
