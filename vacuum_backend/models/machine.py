"""
Pydantic models for machines, availability and admin machine operations.
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime
from decimal import Decimal
import uuid

from .enums import MachineStatus, MaintenanceType


class MaintenanceOverride(BaseModel):
    """
    Admin permission to keep a machine running past its maintenance interval.
    """
    active: bool = False
    reason: Optional[str] = None
    by: Optional[str] = None
    at: Optional[datetime] = None


class Machine(BaseModel):
    """
    Registry entry for one vacuum unit.

    status is only changed through MachineRegistry.transition();
    current_operating_minutes, maintenance_flagged and override are only
    changed by the MaintenanceTracker.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    code: str = Field(..., min_length=1, description="Short code printed on the QR sticker")
    location: str = ""
    controller_id: Optional[str] = None
    status: MachineStatus = MachineStatus.OFFLINE
    last_heartbeat_at: Optional[datetime] = None
    temperature: Optional[float] = None
    current_operating_minutes: int = Field(0, ge=0)
    maintenance_interval_hours: int = Field(..., gt=0)
    maintenance_flagged: bool = False
    override: MaintenanceOverride = Field(default_factory=MaintenanceOverride)
    price_per_minute: Decimal = Field(Decimal("1.00"), gt=0)
    max_duration_minutes: int = Field(30, ge=1)
    last_maintenance_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def operating_hours(self) -> float:
        return self.current_operating_minutes / 60

    @property
    def over_maintenance_threshold(self) -> bool:
        return self.current_operating_minutes >= self.maintenance_interval_hours * 60


class RegisterMachineRequest(BaseModel):
    """
    Request body to register a machine.

    Used by POST /api/admin/machines.
    """
    code: str = Field(..., min_length=1, examples=["VAC-001"])
    location: str = Field("", examples=["Posto Shell - Av. Paulista"])
    controller_id: Optional[str] = Field(None, examples=["rpi-0001"])
    maintenance_interval_hours: int = Field(..., gt=0, examples=[100])
    price_per_minute: Decimal = Field(Decimal("1.00"), gt=0)
    max_duration_minutes: int = Field(30, ge=1, le=120)


class AvailabilityResponse(BaseModel):
    """
    Result of an availability check (QR scan screen).
    """
    available: bool
    reason: Optional[str] = None
    maintenance_warning: bool = False
    machine: Machine

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "available": True,
                    "reason": "Machine requires maintenance but override is active",
                    "maintenance_warning": True,
                    "machine": {"code": "VAC-001", "status": "online"}
                }
            ]
        }
    )


class StatusChangeRequest(BaseModel):
    """Admin status change; in_use is always rejected."""
    status: MachineStatus
    admin_id: str = Field(..., min_length=1)


class OverrideRequest(BaseModel):
    active: bool
    reason: Optional[str] = Field(None, examples=["Maintenance scheduled for tomorrow"])
    admin_id: str = Field(..., min_length=1)


class ResetMaintenanceRequest(BaseModel):
    admin_id: str = Field(..., min_length=1)
    type: MaintenanceType = MaintenanceType.OTHER
    description: Optional[str] = None
    cost: Optional[Decimal] = Field(None, ge=0)
    parts_replaced: list[str] = Field(default_factory=list)


class HeartbeatRequest(BaseModel):
    """Heartbeat sent by the device controller every ~30 seconds."""
    controller_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    temperature: Optional[float] = None


class MachineStats(BaseModel):
    total: int
    online: int
    offline: int
    maintenance: int
    in_use: int
