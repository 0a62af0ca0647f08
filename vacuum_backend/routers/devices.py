"""
Device controller router.

Endpoints:
- POST /api/devices/{machine_id}/heartbeat      - Liveness report (every ~30s)
- POST /api/devices/{machine_id}/session-report - Unit stopped on its own
"""

from fastapi import APIRouter, Depends
import logging

from vacuum_backend.core.dependency import get_liveness_monitor, get_session_orchestrator
from vacuum_backend.exceptions import ValidationError
from vacuum_backend.models.enums import TerminationCause
from vacuum_backend.models.machine import HeartbeatRequest
from vacuum_backend.models.session import DeviceSessionReport, UsageSession
from vacuum_backend.services.liveness_monitor import LivenessMonitor
from vacuum_backend.services.session_orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/devices/{machine_id}/heartbeat")
async def heartbeat(
    machine_id: str,
    request: HeartbeatRequest,
    monitor: LivenessMonitor = Depends(get_liveness_monitor)
):
    """
    Record a controller heartbeat.

    Returns the machine status so the controller can show it locally.
    """
    machine = await monitor.record_heartbeat(
        machine_id,
        reported_at=request.timestamp,
        controller_id=request.controller_id,
        temperature=request.temperature
    )
    return {
        "success": True,
        "machine_id": machine.id,
        "status": machine.status.value,
        "last_heartbeat_at": machine.last_heartbeat_at.isoformat() if machine.last_heartbeat_at else None
    }


@router.post("/devices/{machine_id}/session-report", response_model=UsageSession)
async def session_report(
    machine_id: str,
    report: DeviceSessionReport,
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)
):
    """
    The controller stopped the unit (timer ran out, button pressed).

    Terminates the session with cause device_report using the minutes the
    controller measured; no deactivate command is sent back.
    """
    session = orchestrator.get_session(report.session_id)
    if session.machine_id != machine_id:
        raise ValidationError(
            f"Session '{report.session_id}' does not belong to machine '{machine_id}'",
            "session_id",
            report.session_id
        )

    logger.info(f"Device report for session {report.session_id}: {report.minutes_run} min")
    return await orchestrator.terminate_session(
        report.session_id,
        TerminationCause.DEVICE_REPORT,
        reported_minutes=report.minutes_run
    )
