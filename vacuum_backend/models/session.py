"""
Pydantic models for usage sessions and payment confirmation.
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime
from decimal import Decimal
import uuid

from .enums import SessionStatus, PaymentMethod, TerminationCause


class UsageSession(BaseModel):
    """
    One paid rental of a machine.

    status moves forward only; transitions go through SessionStateMachine.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    machine_id: str
    requested_duration_minutes: int = Field(..., ge=1)
    cost: Decimal
    payment_method: PaymentMethod
    payment_id: Optional[str] = None
    status: SessionStatus = SessionStatus.PENDING
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    actual_minutes_used: Optional[int] = None
    termination_cause: Optional[TerminationCause] = None
    failure_reason: Optional[str] = None
    refund_required: bool = False
    created_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status in SessionStatus.open_statuses()


class CreateSessionRequest(BaseModel):
    """
    Request body to rent a machine.

    Used by POST /api/sessions.
    """
    user_id: str = Field(..., min_length=1)
    machine_id: str = Field(..., min_length=1)
    duration_minutes: int = Field(..., description="Requested minutes (1-30)", examples=[10])
    payment_method: PaymentMethod = PaymentMethod.BALANCE

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "user_id": "u-123",
                    "machine_id": "m-456",
                    "duration_minutes": 10,
                    "payment_method": "balance"
                }
            ]
        }
    )


class PaymentInstructions(BaseModel):
    """What the client must do to finish a deferred payment (PIX QR)."""
    payment_id: str
    amount: Decimal
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None


class SessionResponse(BaseModel):
    success: bool = True
    session: UsageSession
    maintenance_warning: bool = False
    payment: Optional[PaymentInstructions] = None
    message: str = ""


class PaymentNotification(BaseModel):
    """
    Asynchronous payment notification body.

    Used by POST /api/webhooks/payments. Only payment_id is acted on; the
    status is re-read from the gateway.
    """
    payment_id: str = Field(..., min_length=1)
    status: Optional[str] = Field(None, description="Status claimed by the notifier (logged only)")


class DeviceSessionReport(BaseModel):
    """Controller report that the unit stopped on its own."""
    session_id: str
    minutes_run: Optional[int] = Field(None, ge=0)


class ForceTerminateRequest(BaseModel):
    admin_id: str = Field(..., min_length=1)


class SessionStats(BaseModel):
    total: int
    pending: int
    active: int
    completed: int
    failed: int
    cancelled: int
