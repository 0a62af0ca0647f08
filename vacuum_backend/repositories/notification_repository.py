"""
Notification event store used by the dispatcher.
"""
import logging
import threading
from typing import Optional, Any

from vacuum_backend.models.notification import NotificationEvent
from vacuum_backend.models.enums import DeliveryStatus

logger = logging.getLogger(__name__)


class NotificationRepository:
    """In-process store for NotificationEvent records (insertion ordered)."""

    def __init__(self):
        self._events: dict[str, NotificationEvent] = {}
        self._lock = threading.Lock()

    def add(self, event: NotificationEvent) -> NotificationEvent:
        with self._lock:
            self._events[event.id] = event.model_copy()
        return event.model_copy()

    def get(self, event_id: str) -> Optional[NotificationEvent]:
        with self._lock:
            event = self._events.get(event_id)
            return event.model_copy() if event else None

    def update_fields(self, event_id: str, **fields: Any) -> NotificationEvent:
        with self._lock:
            event = self._events[event_id]
            for name, value in fields.items():
                setattr(event, name, value)
            return event.model_copy()

    def list_by_status(self, status: DeliveryStatus) -> list[NotificationEvent]:
        with self._lock:
            return [e.model_copy() for e in self._events.values() if e.delivery_status == status]

    def list_recent(self, limit: int = 50) -> list[NotificationEvent]:
        """Newest first."""
        with self._lock:
            events = list(self._events.values())
        return [e.model_copy() for e in reversed(events[-limit:])] if limit > 0 else []

    def list_all(self) -> list[NotificationEvent]:
        with self._lock:
            return [e.model_copy() for e in self._events.values()]
