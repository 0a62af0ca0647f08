"""
Usage session repository.

Enforces the one-open-session-per-machine rule at insert time so that even a
caller that skipped the availability check cannot create a second pending or
active session for the same machine.
"""
import logging
import threading
from typing import Optional, Any

from vacuum_backend.models.session import UsageSession
from vacuum_backend.models.enums import SessionStatus
from vacuum_backend.exceptions import SessionNotFoundError, MachineBusyError

logger = logging.getLogger(__name__)


class SessionRepository:
    """In-process store for UsageSession entities."""

    def __init__(self):
        self._sessions: dict[str, UsageSession] = {}
        self._lock = threading.Lock()

    def _open_for_machine(self, machine_id: str) -> Optional[UsageSession]:
        for session in self._sessions.values():
            if session.machine_id == machine_id and session.is_open:
                return session
        return None

    def add(self, session: UsageSession) -> UsageSession:
        """
        Insert a new session.

        Raises:
            MachineBusyError: If the machine already has a pending/active session
        """
        with self._lock:
            if session.is_open:
                existing = self._open_for_machine(session.machine_id)
                if existing is not None:
                    raise MachineBusyError(
                        session.machine_id,
                        reason="Machine already has an open session",
                        holder=existing.id
                    )
            self._sessions[session.id] = session.model_copy(deep=True)

        logger.debug(f"Session stored: {session.id} ({session.status.value})")
        return session.model_copy(deep=True)

    def get(self, session_id: str) -> Optional[UsageSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session else None

    def get_or_raise(self, session_id: str) -> UsageSession:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def find_by_payment_id(self, payment_id: str) -> Optional[UsageSession]:
        with self._lock:
            for session in self._sessions.values():
                if session.payment_id == payment_id:
                    return session.model_copy(deep=True)
        return None

    def find_open_for_machine(self, machine_id: str) -> Optional[UsageSession]:
        with self._lock:
            session = self._open_for_machine(machine_id)
            return session.model_copy(deep=True) if session else None

    def find_active_for_machine(self, machine_id: str) -> Optional[UsageSession]:
        session = self.find_open_for_machine(machine_id)
        if session and session.status == SessionStatus.ACTIVE:
            return session
        return None

    def list_by_status(self, status: SessionStatus) -> list[UsageSession]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._sessions.values() if s.status == status]

    def list_by_user(self, user_id: str, limit: int = 50) -> list[UsageSession]:
        """Most recent first."""
        with self._lock:
            sessions = [s.model_copy(deep=True) for s in self._sessions.values() if s.user_id == user_id]
        sessions.sort(key=lambda s: s.created_at.timestamp() if s.created_at else 0, reverse=True)
        return sessions[:limit]

    def update_fields(self, session_id: str, **fields: Any) -> UsageSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            for name, value in fields.items():
                setattr(session, name, value)
            return session.model_copy(deep=True)

    def count_by_status(self) -> dict[SessionStatus, int]:
        with self._lock:
            counts = {status: 0 for status in SessionStatus}
            for session in self._sessions.values():
                counts[session.status] += 1
            return counts
