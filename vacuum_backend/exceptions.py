"""
Custom exception hierarchy for the vacuum rental backend.

Every domain exception inherits from RentalException and carries a
machine-readable error_code plus a data dict for the API error response.

Categories:
- ValidationError: bad input
- NotFoundError: unknown machine, session, user or payment
- ConflictError: concurrent access on a machine (MachineBusy)
- StateError: HeartbeatRequired, MaintenanceBlocked, InvalidTransition
- PaymentError: declined payment, gateway failure
- ExternalServiceError: notification / device command dispatch failure
"""
from typing import Optional, Any


class RentalException(Exception):
    """
    Base exception for the whole system.
    """

    def __init__(
        self,
        message: str,
        error_code: str,
        data: Optional[dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.data = data or {}
        super().__init__(self.message)


class ValidationError(RentalException):
    """Invalid request input (duration out of range, unknown payment method...)."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            data={"field": field, "value": value} if field else {}
        )


class NotFoundError(RentalException):
    """Base class for 404 errors."""


class ConflictError(RentalException):
    """Base class for concurrency conflicts."""


class StateError(RentalException):
    """Base class for operations not allowed in the current machine/session state."""


class PaymentError(RentalException):
    """Base class for payment failures."""


class ExternalServiceError(RentalException):
    """Base class for failures talking to device or messaging collaborators."""


# ==================== 404 (NOT FOUND) ====================

class MachineNotFoundError(NotFoundError):
    """Machine does not exist in the registry."""

    def __init__(self, machine_ref: str):
        super().__init__(
            message=f"Machine '{machine_ref}' not found",
            error_code="MACHINE_NOT_FOUND",
            data={"machine": machine_ref}
        )


class SessionNotFoundError(NotFoundError):
    """Usage session does not exist."""

    def __init__(self, session_ref: str):
        super().__init__(
            message=f"Session '{session_ref}' not found",
            error_code="SESSION_NOT_FOUND",
            data={"session": session_ref}
        )


class PaymentNotFoundError(NotFoundError):
    """No session references this external payment id."""

    def __init__(self, payment_id: str):
        super().__init__(
            message=f"No session found for payment '{payment_id}'",
            error_code="PAYMENT_NOT_FOUND",
            data={"payment_id": payment_id}
        )


class UserNotFoundError(NotFoundError):
    """User does not exist."""

    def __init__(self, user_id: str):
        super().__init__(
            message=f"User '{user_id}' not found",
            error_code="USER_NOT_FOUND",
            data={"user_id": user_id}
        )


# ==================== 409 (CONFLICT) ====================

class MachineBusyError(ConflictError):
    """
    Machine is locked by a concurrent operation or already running a session.

    Lock acquisition fails fast with this error instead of queueing.
    """

    def __init__(self, machine_id: str, reason: str = "Machine is busy", holder: Optional[str] = None):
        data = {"machine_id": machine_id, "reason": reason}
        if holder:
            data["holder"] = holder
        super().__init__(
            message=f"Machine '{machine_id}' is busy: {reason}",
            error_code="MACHINE_BUSY",
            data=data
        )


# ==================== 409 (STATE) ====================

class HeartbeatRequiredError(StateError):
    """
    Transition to online refused because the controller heartbeat is missing or stale.
    """

    def __init__(
        self,
        machine_id: str,
        age_seconds: Optional[int] = None,
        threshold_seconds: Optional[int] = None
    ):
        if age_seconds is None:
            detail = "heartbeat never received"
        else:
            detail = f"heartbeat stale by {age_seconds} seconds"

        super().__init__(
            message=f"Machine '{machine_id}' cannot go online: {detail}",
            error_code="HEARTBEAT_REQUIRED",
            data={
                "machine_id": machine_id,
                "age_seconds": age_seconds,
                "threshold_seconds": threshold_seconds
            }
        )


class MaintenanceBlockedError(StateError):
    """Machine is in maintenance and no override is active."""

    def __init__(self, machine_id: str, operating_minutes: Optional[int] = None):
        super().__init__(
            message=f"Machine '{machine_id}' requires maintenance and cannot be used",
            error_code="MAINTENANCE_BLOCKED",
            data={"machine_id": machine_id, "operating_minutes": operating_minutes}
        )


class InvalidTransitionError(StateError):
    """
    Raised when a status change is not in the transition table.

    Examples:
    - offline → in_use (machine must be online first)
    - admin forcing in_use (only session activation may do it)
    - completed → active for a session
    """

    def __init__(
        self,
        message: str,
        subject_id: Optional[str] = None,
        current_state: Optional[str] = None,
        attempted_state: Optional[str] = None
    ):
        super().__init__(
            message=message,
            error_code="INVALID_STATE_TRANSITION",
            data={
                "subject_id": subject_id,
                "current_state": current_state,
                "attempted_state": attempted_state
            }
        )


# ==================== PAYMENTS ====================

class PaymentDeclinedError(PaymentError):
    """Payment refused (insufficient balance, rejected charge, amount mismatch)."""

    def __init__(self, reason: str, amount: Optional[str] = None):
        super().__init__(
            message=f"Payment declined: {reason}",
            error_code="PAYMENT_DECLINED",
            data={"reason": reason, "amount": amount}
        )


class PaymentGatewayError(PaymentError):
    """Payment gateway could not be reached or returned an unexpected response."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(
            message=f"Payment gateway error: {message}",
            error_code="PAYMENT_GATEWAY_ERROR",
            data={"details": details} if details else {}
        )


# ==================== EXTERNAL SERVICES ====================

class NotificationDeliveryError(ExternalServiceError):
    """Messaging channel refused or failed to deliver a notification."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            message=f"Notification delivery failed: {message}",
            error_code="NOTIFICATION_DELIVERY_ERROR",
            data={"status_code": status_code} if status_code else {}
        )


class DeviceCommandError(ExternalServiceError):
    """Activation/deactivation command could not be delivered to the controller."""

    def __init__(self, machine_id: str, command: str, details: Optional[str] = None):
        super().__init__(
            message=f"Device command '{command}' failed for machine '{machine_id}'",
            error_code="DEVICE_COMMAND_ERROR",
            data={"machine_id": machine_id, "command": command, "details": details}
        )
