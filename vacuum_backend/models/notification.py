"""
Notification events produced by the dispatcher.
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
import uuid

from .enums import NotificationType, DeliveryStatus


class NotificationEvent(BaseModel):
    """
    Alert forwarded to the messaging channel.

    delivery_status and attempts are only updated by the delivery/retry
    mechanism of NotificationDispatcher.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: NotificationType
    machine_id: Optional[str] = None
    message: str
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class NotificationStats(BaseModel):
    total: int
    sent: int
    failed: int
    pending: int
    by_type: dict[str, int]
    rate_window: dict[str, int] = Field(
        default_factory=dict,
        description="Alerts counted in the current rate limit window per \"type:machine_id\""
    )
