"""
Admin router.

Endpoints:
- POST /api/admin/machines                              - Register a machine
- POST /api/admin/machines/{machine_id}/status          - Manual status change (never in_use)
- POST /api/admin/machines/{machine_id}/override        - Enable/disable maintenance override
- POST /api/admin/machines/{machine_id}/maintenance/reset - Reset counter after maintenance
- GET  /api/admin/machines/{machine_id}/maintenance/logs  - Maintenance history
- GET  /api/admin/maintenance/due                       - Machines past their interval
- POST /api/admin/sessions/{session_id}/terminate       - Force-terminate a session
- GET  /api/admin/sessions/stats                        - Session counts per status
- POST /api/admin/users                                 - Create a customer account
- POST /api/admin/users/{user_id}/credit                - Top up a balance
- GET  /api/admin/notifications                         - Recent notifications
- GET  /api/admin/notifications/stats                   - Notification counts
- POST /api/admin/notifications/retry                   - Retry failed notifications now
- GET  /api/admin/jobs                                  - Scheduler job status
- POST /api/admin/jobs/{name}/run                         - Run one job immediately
"""

from fastapi import APIRouter, Depends, HTTPException, status
import logging

from vacuum_backend.core.dependency import (
    get_machine_registry,
    get_maintenance_tracker,
    get_session_orchestrator,
    get_notification_dispatcher,
    get_user_repository,
    get_scheduler
)
from vacuum_backend.models.enums import TerminationCause
from vacuum_backend.models.machine import (
    Machine,
    RegisterMachineRequest,
    StatusChangeRequest,
    OverrideRequest,
    ResetMaintenanceRequest
)
from vacuum_backend.models.maintenance import MaintenanceLogEntry
from vacuum_backend.models.notification import NotificationEvent, NotificationStats
from vacuum_backend.models.session import ForceTerminateRequest, UsageSession, SessionStats
from vacuum_backend.models.user import User, CreateUserRequest, CreditRequest
from vacuum_backend.repositories.user_repository import UserRepository
from vacuum_backend.services.machine_registry import MachineRegistry
from vacuum_backend.services.maintenance_tracker import MaintenanceTracker
from vacuum_backend.services.notification_dispatcher import NotificationDispatcher
from vacuum_backend.services.scheduler_service import SchedulerService
from vacuum_backend.services.session_orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")


# ==================== MACHINES ====================

@router.post("/machines", response_model=Machine, status_code=status.HTTP_201_CREATED)
async def register_machine(
    request: RegisterMachineRequest,
    registry: MachineRegistry = Depends(get_machine_registry)
):
    """New machines start offline until the controller heartbeats."""
    return registry.register_machine(request)


@router.post("/machines/{machine_id}/status", response_model=Machine)
async def change_status(
    machine_id: str,
    request: StatusChangeRequest,
    registry: MachineRegistry = Depends(get_machine_registry)
):
    """
    Manual status change inside the machine lock.

    Errors:
        409 INVALID_STATE_TRANSITION (in_use, or not in the transition table),
        409 HEARTBEAT_REQUIRED (online without a recent heartbeat),
        409 MACHINE_BUSY
    """
    logger.info(f"Admin {request.admin_id}: {machine_id} → {request.status.value}")
    return await registry.change_status(machine_id, request.status, request.admin_id)


@router.post("/machines/{machine_id}/override", response_model=Machine)
async def set_override(
    machine_id: str,
    request: OverrideRequest,
    tracker: MaintenanceTracker = Depends(get_maintenance_tracker)
):
    """
    Keep a machine rentable past its maintenance interval (or revoke that).

    Example request:
        ```json
        {"active": true, "reason": "Technician visit scheduled tomorrow", "admin_id": "admin-1"}
        ```
    """
    return await tracker.set_override(machine_id, request.active, request.reason, request.admin_id)


@router.post("/machines/{machine_id}/maintenance/reset", response_model=MaintenanceLogEntry)
async def reset_maintenance(
    machine_id: str,
    request: ResetMaintenanceRequest,
    tracker: MaintenanceTracker = Depends(get_maintenance_tracker)
):
    """
    Record performed maintenance: zeroes the counter, clears the override and
    brings the machine back online (requires a recent heartbeat).
    """
    return await tracker.reset_maintenance(machine_id, request)


@router.get("/machines/{machine_id}/maintenance/logs", response_model=list[MaintenanceLogEntry])
async def maintenance_logs(machine_id: str, tracker: MaintenanceTracker = Depends(get_maintenance_tracker)):
    return tracker.get_maintenance_logs(machine_id)


@router.get("/maintenance/due", response_model=list[Machine])
async def maintenance_due(tracker: MaintenanceTracker = Depends(get_maintenance_tracker)):
    return tracker.machines_requiring_maintenance()


# ==================== SESSIONS ====================

@router.post("/sessions/{session_id}/terminate", response_model=UsageSession)
async def force_terminate(
    session_id: str,
    request: ForceTerminateRequest,
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)
):
    logger.warning(f"⚠️ Admin {request.admin_id} force-terminating session {session_id}")
    return await orchestrator.terminate_session(session_id, TerminationCause.ADMIN_FORCE)


@router.get("/sessions/stats", response_model=SessionStats)
async def session_stats(orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)):
    return orchestrator.session_stats()


# ==================== USERS ====================

@router.post("/users", response_model=User, status_code=status.HTTP_201_CREATED)
async def create_user(request: CreateUserRequest, users: UserRepository = Depends(get_user_repository)):
    return users.add(User(email=request.email, name=request.name, account_balance=request.initial_balance))


@router.post("/users/{user_id}/credit", response_model=User)
async def credit_user(user_id: str, request: CreditRequest, users: UserRepository = Depends(get_user_repository)):
    users.credit(user_id, request.amount)
    return users.get_or_raise(user_id)


# ==================== NOTIFICATIONS / JOBS ====================

@router.get("/notifications", response_model=list[NotificationEvent])
async def list_notifications(
    limit: int = 50,
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher)
):
    return dispatcher.recent(limit)


@router.get("/notifications/stats", response_model=NotificationStats)
async def notification_stats(dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher)):
    return dispatcher.stats()


@router.post("/notifications/retry")
async def retry_notifications(dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher)):
    sent = await dispatcher.retry_failed()
    return {"success": True, "sent": sent}


@router.get("/jobs")
async def job_status(scheduler: SchedulerService = Depends(get_scheduler)):
    return scheduler.status()


@router.post("/jobs/{name}/run")
async def run_job(name: str, scheduler: SchedulerService = Depends(get_scheduler)):
    """
    Run a scheduled job once, outside its interval (e.g. sweep timeouts after an outage).

    Errors:
        404 if no job is registered under that name
    """
    try:
        job = await scheduler.run_now(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Job not found: {name}")

    logger.info(f"Admin triggered job '{name}' (failures={job.failures})")
    return next(entry for entry in scheduler.status() if entry["name"] == name)
