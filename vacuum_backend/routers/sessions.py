"""
Sessions router (customer surface).

Endpoints:
- POST /api/sessions                    - Rent a machine (charges upfront)
- GET  /api/sessions/{session_id}       - Session detail
- POST /api/sessions/{session_id}/stop  - User stops the session (no refund)
- POST /api/sessions/{session_id}/cancel - Cancel a session still waiting for payment
- GET  /api/users/{user_id}/sessions    - Session history of a user
"""

from fastapi import APIRouter, Depends, status
import logging

from vacuum_backend.core.dependency import get_session_orchestrator
from vacuum_backend.models.enums import TerminationCause
from vacuum_backend.models.session import CreateSessionRequest, SessionResponse, UsageSession
from vacuum_backend.services.session_orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    request: CreateSessionRequest,
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)
):
    """
    Rent a machine for a number of minutes, paid upfront.

    balance: debited now, session active, machine starts.
    pix: session pending with QR payment instructions; the payment webhook
    activates it.

    Errors:
        400 VALIDATION_ERROR, 402 PAYMENT_DECLINED, 404 MACHINE/USER_NOT_FOUND,
        409 MACHINE_BUSY / MAINTENANCE_BLOCKED / HEARTBEAT_REQUIRED,
        502 PAYMENT_GATEWAY_ERROR

    Example request:
        ```bash
        curl -X POST http://localhost:8000/api/sessions \\
          -H "Content-Type: application/json" \\
          -d '{"user_id": "u-123", "machine_id": "m-456", "duration_minutes": 10, "payment_method": "balance"}'
        ```
    """
    logger.info(
        f"POST /api/sessions - user={request.user_id}, machine={request.machine_id}, "
        f"minutes={request.duration_minutes}, method={request.payment_method.value}"
    )
    return await orchestrator.create_session(
        user_id=request.user_id,
        machine_id=request.machine_id,
        duration_minutes=request.duration_minutes,
        payment_method=request.payment_method
    )


@router.get("/sessions/{session_id}", response_model=UsageSession)
async def get_session(session_id: str, orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)):
    return orchestrator.get_session(session_id)


@router.post("/sessions/{session_id}/stop", response_model=UsageSession)
async def stop_session(session_id: str, orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)):
    """
    Stop a running session early. Actual minutes are billed to the machine's
    usage counter; the user is not refunded.
    """
    logger.info(f"POST /api/sessions/{session_id}/stop")
    return await orchestrator.terminate_session(session_id, TerminationCause.USER_STOP)


@router.post("/sessions/{session_id}/cancel", response_model=UsageSession)
async def cancel_session(session_id: str, orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)):
    logger.info(f"POST /api/sessions/{session_id}/cancel")
    return await orchestrator.cancel_session(session_id)


@router.get("/users/{user_id}/sessions", response_model=list[UsageSession])
async def list_user_sessions(
    user_id: str,
    limit: int = 50,
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)
):
    return orchestrator.list_user_sessions(user_id, limit)
