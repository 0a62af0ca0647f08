"""
SSE router for realtime machine and session updates.

Endpoints:
    GET /api/sse/stream - Server-Sent Events from the machines:updates channel
"""
from fastapi import APIRouter, Request, Depends, HTTPException
from sse_starlette import EventSourceResponse
from redis import asyncio as aioredis

from vacuum_backend.core.dependency import get_redis_repository
from vacuum_backend.repositories.redis_repository import RedisRepository
from vacuum_backend.services.sse_service import event_generator

router = APIRouter(prefix="/sse", tags=["SSE"])


def get_pubsub_redis(redis_repo: RedisRepository = Depends(get_redis_repository)) -> aioredis.Redis:
    """
    Dedicated pub/sub client for streaming.

    Raises:
        HTTPException 503: Redis not connected
    """
    client = redis_repo.get_pubsub_client()
    if client is None:
        raise HTTPException(status_code=503, detail="Realtime channel unavailable")
    return client


@router.get("/stream")
async def sse_stream(request: Request, redis: aioredis.Redis = Depends(get_pubsub_redis)):
    """
    Stream machine_status_changed and session_status_changed events.

    Example:
        ```javascript
        const source = new EventSource('/api/sse/stream');
        source.addEventListener('machine_status_changed', (e) => console.log(JSON.parse(e.data)));
        ```
    """
    headers = {
        "Cache-Control": "no-cache, no-transform",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",  # Disable nginx buffering
    }

    return EventSourceResponse(
        event_generator(request, redis),
        headers=headers,
        ping=15,
        send_timeout=30
    )
