"""
Machines router (customer surface).

Endpoints:
- GET /api/machines                      - List machines (optional status filter)
- GET /api/machines/stats                - Count per status
- GET /api/machines/code/{code}          - Lookup by QR code
- GET /api/machines/{machine_id}         - Machine detail
- GET /api/machines/{machine_id}/availability - Availability for the QR scan screen
- GET /api/machines/{machine_id}/active-session - Running session, if any
"""

from typing import Optional
from fastapi import APIRouter, Depends, status
import logging

from vacuum_backend.core.dependency import get_machine_registry, get_session_orchestrator
from vacuum_backend.models.enums import MachineStatus
from vacuum_backend.models.machine import Machine, AvailabilityResponse, MachineStats
from vacuum_backend.models.session import UsageSession
from vacuum_backend.services.machine_registry import MachineRegistry
from vacuum_backend.services.session_orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/machines", response_model=list[Machine])
async def list_machines(
    status_filter: Optional[MachineStatus] = None,
    registry: MachineRegistry = Depends(get_machine_registry)
):
    return registry.list_machines(status_filter)


@router.get("/machines/stats", response_model=MachineStats)
async def machine_stats(registry: MachineRegistry = Depends(get_machine_registry)):
    return registry.stats()


@router.get("/machines/code/{code}", response_model=Machine)
async def get_machine_by_code(code: str, registry: MachineRegistry = Depends(get_machine_registry)):
    """
    Resolve the code printed on the machine's QR sticker.

    Raises:
        404 MACHINE_NOT_FOUND
    """
    return registry.get_machine_by_code(code)


@router.get("/machines/{machine_id}", response_model=Machine)
async def get_machine(machine_id: str, registry: MachineRegistry = Depends(get_machine_registry)):
    return registry.get_machine(machine_id)


@router.get(
    "/machines/{machine_id}/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK
)
async def check_availability(
    machine_id: str,
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)
):
    """
    Whether the machine can be rented right now.

    An unavailable machine is a normal 200 response with available=false and
    the reason; a maintenance machine under override is available with
    maintenance_warning=true.

    Example response:
        ```json
        {
            "available": false,
            "reason": "Machine 'a1b2' cannot go online: heartbeat stale by 120 seconds",
            "maintenance_warning": false,
            "machine": {"code": "VAC-001", "status": "offline"}
        }
        ```
    """
    logger.info(f"GET /api/machines/{machine_id}/availability")
    return await orchestrator.check_availability(machine_id)


@router.get("/machines/{machine_id}/active-session", response_model=Optional[UsageSession])
async def get_active_session(
    machine_id: str,
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)
):
    return orchestrator.get_active_session(machine_id)
