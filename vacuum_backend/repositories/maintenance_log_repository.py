"""
Append-only maintenance log.

Entries are frozen models; there is no update or delete operation.
"""
import logging
import threading

from vacuum_backend.models.maintenance import MaintenanceLogEntry

logger = logging.getLogger(__name__)


class MaintenanceLogRepository:

    def __init__(self):
        self._entries: list[MaintenanceLogEntry] = []
        self._lock = threading.Lock()

    def append(self, entry: MaintenanceLogEntry) -> MaintenanceLogEntry:
        with self._lock:
            self._entries.append(entry)
        logger.info(
            f"Maintenance log appended: machine {entry.machine_id}, type={entry.type.value}, "
            f"minutes_at_reset={entry.operating_minutes_at_reset}"
        )
        return entry

    def list_for_machine(self, machine_id: str) -> list[MaintenanceLogEntry]:
        """Newest first."""
        with self._lock:
            entries = [e for e in self._entries if e.machine_id == machine_id]
        return list(reversed(entries))

    def count(self) -> int:
        with self._lock:
            return len(self._entries)
