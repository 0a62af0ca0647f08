"""
Dependency injection for FastAPI.

ServiceContainer wires repositories and services once per process. Routers
get individual services through the factory functions below with Depends(),
and tests replace the whole graph with
app.dependency_overrides[get_container] = lambda: container.

Usage in routers:
    from vacuum_backend.core.dependency import get_session_orchestrator

    @router.post("/sessions")
    async def create_session(
        request: CreateSessionRequest,
        orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)
    ):
        ...
"""
import logging
from typing import Optional

from fastapi import Depends

from vacuum_backend.config import config
from vacuum_backend.repositories.machine_repository import MachineRepository
from vacuum_backend.repositories.maintenance_log_repository import MaintenanceLogRepository
from vacuum_backend.repositories.notification_repository import NotificationRepository
from vacuum_backend.repositories.redis_repository import RedisRepository
from vacuum_backend.repositories.session_repository import SessionRepository
from vacuum_backend.repositories.user_repository import UserRepository
from vacuum_backend.services.device_gateway import RedisDeviceGateway
from vacuum_backend.services.liveness_monitor import LivenessMonitor
from vacuum_backend.services.machine_lock_service import InMemoryLockService, MachineLockGuard, LockBackend
from vacuum_backend.services.machine_registry import MachineRegistry
from vacuum_backend.services.maintenance_tracker import MaintenanceTracker
from vacuum_backend.services.notification_channel import WhatsAppChannel
from vacuum_backend.services.notification_dispatcher import NotificationDispatcher
from vacuum_backend.services.payment_service import PaymentService, MercadoPagoPixGateway
from vacuum_backend.services.redis_event_service import RedisEventService
from vacuum_backend.services.redis_lock_service import RedisLockService
from vacuum_backend.services.scheduler_service import SchedulerService
from vacuum_backend.services.session_orchestrator import SessionOrchestrator
from vacuum_backend.utils.date_formatter import Clock, now_local

logger = logging.getLogger(__name__)


class ServiceContainer:
    """
    Object graph of the application.

    Every collaborator can be replaced through the constructor (tests pass a
    controllable clock, a fake channel, a fake device gateway...).
    """

    def __init__(
        self,
        clock: Clock = now_local,
        redis_repository: Optional[RedisRepository] = None,
        lock_backend: Optional[LockBackend] = None,
        notification_channel=None,
        pix_gateway: Optional[MercadoPagoPixGateway] = None,
        device_gateway=None,
        event_service: Optional[RedisEventService] = None
    ):
        self.clock = clock
        self.redis_repository = redis_repository or RedisRepository()
        redis_client = self.redis_repository.client

        # Repositories
        self.machine_repository = MachineRepository()
        self.session_repository = SessionRepository()
        self.user_repository = UserRepository()
        self.maintenance_log_repository = MaintenanceLogRepository()
        self.notification_repository = NotificationRepository()

        # Infrastructure
        if lock_backend is None:
            if config.LOCK_BACKEND == "redis":
                if redis_client is None:
                    raise RuntimeError("LOCK_BACKEND=redis requires a connected Redis client")
                lock_backend = RedisLockService(redis_client)
            else:
                lock_backend = InMemoryLockService(clock=clock)
        self.lock_guard = MachineLockGuard(lock_backend)
        self.event_service = event_service or RedisEventService(redis_client, clock=clock)
        self.device_gateway = device_gateway or RedisDeviceGateway(redis_client, clock=clock)

        # Services
        self.dispatcher = NotificationDispatcher(
            self.notification_repository,
            notification_channel or WhatsAppChannel(),
            clock=clock
        )
        self.registry = MachineRegistry(
            self.machine_repository,
            self.event_service,
            self.lock_guard,
            clock=clock
        )
        self.tracker = MaintenanceTracker(
            self.machine_repository,
            self.maintenance_log_repository,
            self.registry,
            self.dispatcher,
            self.lock_guard,
            clock=clock
        )
        self.liveness_monitor = LivenessMonitor(
            self.machine_repository,
            self.registry,
            self.lock_guard,
            self.dispatcher,
            clock=clock
        )
        self.payment_service = PaymentService(self.user_repository, pix_gateway or MercadoPagoPixGateway())
        self.orchestrator = SessionOrchestrator(
            self.machine_repository,
            self.session_repository,
            self.user_repository,
            self.registry,
            self.tracker,
            self.lock_guard,
            self.payment_service,
            self.device_gateway,
            self.dispatcher,
            self.event_service,
            clock=clock
        )

        self.scheduler = SchedulerService(clock=clock)
        self.scheduler.add_job("liveness_tick", config.LIVENESS_INTERVAL_SECONDS, self.liveness_monitor.tick)
        self.scheduler.add_job(
            "expire_pending_sessions",
            config.SESSION_SWEEP_INTERVAL_SECONDS,
            self.orchestrator.expire_pending_sessions
        )
        self.scheduler.add_job(
            "terminate_expired_sessions",
            config.SESSION_SWEEP_INTERVAL_SECONDS,
            self.orchestrator.terminate_expired_sessions
        )
        self.scheduler.add_job(
            "retry_failed_notifications",
            config.NOTIFICATION_RETRY_INTERVAL_SECONDS,
            self.dispatcher.retry_failed
        )

    async def start(self) -> None:
        self.dispatcher.start()
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.dispatcher.stop()


# ============================================================================
# SINGLETON
# ============================================================================

_container: Optional[ServiceContainer] = None


def init_container(container: Optional[ServiceContainer] = None) -> ServiceContainer:
    """
    Build (or install) the process-wide container. Called from the FastAPI
    startup event once Redis is connected.
    """
    global _container
    _container = container or ServiceContainer()
    return _container


def get_container() -> ServiceContainer:
    """
    Factory for the ServiceContainer (singleton, lazy).

    Usage:
        container: ServiceContainer = Depends(get_container)
    """
    global _container
    if _container is None:
        _container = ServiceContainer()
    return _container


def reset_container() -> None:
    """Drop the singleton (tests)."""
    global _container
    _container = None


# ============================================================================
# FACTORY FUNCTIONS
# ============================================================================


def get_machine_registry(container: ServiceContainer = Depends(get_container)) -> MachineRegistry:
    return container.registry


def get_maintenance_tracker(container: ServiceContainer = Depends(get_container)) -> MaintenanceTracker:
    return container.tracker


def get_liveness_monitor(container: ServiceContainer = Depends(get_container)) -> LivenessMonitor:
    return container.liveness_monitor


def get_session_orchestrator(container: ServiceContainer = Depends(get_container)) -> SessionOrchestrator:
    return container.orchestrator


def get_notification_dispatcher(container: ServiceContainer = Depends(get_container)) -> NotificationDispatcher:
    return container.dispatcher


def get_user_repository(container: ServiceContainer = Depends(get_container)) -> UserRepository:
    return container.user_repository


def get_redis_repository(container: ServiceContainer = Depends(get_container)) -> RedisRepository:
    return container.redis_repository


def get_scheduler(container: ServiceContainer = Depends(get_container)) -> SchedulerService:
    return container.scheduler
