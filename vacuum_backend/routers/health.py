"""
Health check router.

Endpoints:
- GET /api/health - API, Redis, scheduler and fleet status
"""

from fastapi import APIRouter, Depends, status
import logging

from vacuum_backend.core.dependency import get_container, ServiceContainer
from vacuum_backend.config import config

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(container: ServiceContainer = Depends(get_container)):
    """
    Health check for the platform and monitoring.

    Redis is only required when LOCK_BACKEND=redis; otherwise an unreachable
    Redis degrades the realtime channel but not the API. Always 200 so the
    platform does not restart a degraded but working app.

    Example response:
        ```json
        {
            "status": "healthy",
            "environment": "production",
            "lock_backend": "memory",
            "redis": {"status": "healthy"},
            "scheduler_running": true,
            "machines": {"total": 4, "online": 2, "offline": 1, "maintenance": 1, "in_use": 0}
        }
        ```
    """
    redis_status = await container.redis_repository.health_check()
    redis_ok = redis_status["status"] == "healthy"

    if config.LOCK_BACKEND == "redis" and not redis_ok:
        overall = "unhealthy"
    elif not redis_ok:
        overall = "degraded"
    else:
        overall = "healthy"

    return {
        "status": overall,
        "timestamp": container.clock().isoformat(),
        "environment": config.ENVIRONMENT,
        "lock_backend": config.LOCK_BACKEND,
        "redis": redis_status,
        "scheduler_running": container.scheduler.is_running,
        "machines": container.registry.stats().model_dump(),
        "version": "1.0.0"
    }
