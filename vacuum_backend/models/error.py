"""
Pydantic model for API error responses.
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Any


class ErrorResponse(BaseModel):
    """
    Standard error body returned by every exception handler.
    """
    success: bool = Field(
        False,
        description="Always False for errors"
    )
    error: str = Field(
        ...,
        description="Error code (e.g. MACHINE_BUSY, HEARTBEAT_REQUIRED)",
        examples=["MACHINE_BUSY", "HEARTBEAT_REQUIRED", "MAINTENANCE_BLOCKED"]
    )
    message: str = Field(
        ...,
        description="Human readable error message",
        examples=["Machine 'VAC-001' cannot go online: heartbeat stale by 120 seconds"]
    )
    data: Optional[dict[str, Any]] = Field(
        None,
        description="Additional error context (optional)"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "success": False,
                    "error": "MACHINE_BUSY",
                    "message": "Machine 'a1b2' is busy: Machine already has an open session",
                    "data": {"machine_id": "a1b2", "reason": "Machine already has an open session"}
                },
                {
                    "success": False,
                    "error": "PAYMENT_DECLINED",
                    "message": "Payment declined: insufficient balance",
                    "data": {"reason": "insufficient balance", "amount": "30.00"}
                }
            ]
        }
    )
