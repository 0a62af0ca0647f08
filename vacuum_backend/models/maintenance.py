"""
Append-only maintenance audit records.
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime
from decimal import Decimal
import uuid

from .enums import MaintenanceType


class MaintenanceLogEntry(BaseModel):
    """Never mutated after creation."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    machine_id: str
    type: MaintenanceType
    performed_by: Optional[str] = None
    description: Optional[str] = None
    cost: Optional[Decimal] = None
    parts_replaced: list[str] = Field(default_factory=list)
    operating_minutes_at_reset: int = 0
    timestamp: datetime

    model_config = ConfigDict(frozen=True)
