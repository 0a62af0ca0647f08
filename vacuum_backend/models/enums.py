"""
Enumerations for the vacuum rental system.
"""
from enum import Enum


class MachineStatus(str, Enum):
    """
    Machine availability.

    ONLINE: heartbeating and idle, can be rented
    OFFLINE: heartbeat missing or stale
    MAINTENANCE: operating limit reached (or set by admin)
    IN_USE: running a paid session
    """
    ONLINE = "online"
    OFFLINE = "offline"
    MAINTENANCE = "maintenance"
    IN_USE = "in_use"


class TransitionCause(str, Enum):
    """Why a machine changed status (recorded on every broadcast)."""
    HEARTBEAT_RECOVERY = "heartbeat_recovery"
    SESSION_ACTIVATION = "session_activation"
    SESSION_TERMINATION = "session_termination"
    HEARTBEAT_STALE = "heartbeat_stale"
    MAINTENANCE_THRESHOLD = "maintenance_threshold"
    OVERRIDE_ENABLED = "override_enabled"
    OVERRIDE_DISABLED = "override_disabled"
    MAINTENANCE_RESET = "maintenance_reset"
    ADMIN = "admin"


class SessionStatus(str, Enum):
    """
    Usage session lifecycle (forward only).

    PENDING → ACTIVE → COMPLETED
    PENDING → FAILED | CANCELLED
    """
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def open_statuses(cls) -> tuple["SessionStatus", ...]:
        """Statuses that hold a machine (at most one per machine)."""
        return (cls.PENDING, cls.ACTIVE)


class PaymentMethod(str, Enum):
    """
    BALANCE: account balance, settles immediately
    PIX: external instant payment, settles asynchronously via webhook
    """
    BALANCE = "balance"
    PIX = "pix"


class PaymentStatus(str, Enum):
    """External payment status reported by the gateway."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class TerminationCause(str, Enum):
    USER_STOP = "user_stop"
    TIMEOUT = "timeout"
    ADMIN_FORCE = "admin_force"
    DEVICE_REPORT = "device_report"


class NotificationType(str, Enum):
    MAINTENANCE_REQUIRED = "maintenance_required"
    MACHINE_OFFLINE = "machine_offline"
    SYSTEM_ERROR = "system_error"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class MaintenanceType(str, Enum):
    CLEANING = "cleaning"
    REPAIR = "repair"
    INSPECTION = "inspection"
    PART_REPLACEMENT = "part_replacement"
    OTHER = "other"
