"""
Session orchestrator: admission, payment settlement and termination of
usage sessions.

Every operation that reads and then changes a machine runs inside that
machine's critical section (MachineLockGuard), so two concurrent requests
for one machine cannot both pass the availability check. Device commands
are sent after the lock is released.

Flows:
- create_session: lock → availability → store pending → charge → _confirm()
  → unlock → activate
- confirm_payment: lock → (still pending?) → availability → activate → unlock
- terminate_session: lock → complete → MaintenanceTracker.release_after_session
  → unlock → deactivate
"""
import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from vacuum_backend.config import config
from vacuum_backend.exceptions import (
    RentalException,
    ValidationError,
    MachineBusyError,
    MaintenanceBlockedError,
    InvalidTransitionError,
    PaymentNotFoundError,
    ConflictError,
    StateError,
    DeviceCommandError
)
from vacuum_backend.models.enums import (
    MachineStatus,
    SessionStatus,
    PaymentMethod,
    PaymentStatus,
    TerminationCause,
    TransitionCause,
    NotificationType
)
from vacuum_backend.models.machine import Machine, AvailabilityResponse
from vacuum_backend.models.session import (
    UsageSession,
    SessionResponse,
    PaymentInstructions,
    SessionStats
)
from vacuum_backend.repositories.machine_repository import MachineRepository
from vacuum_backend.repositories.session_repository import SessionRepository
from vacuum_backend.repositories.user_repository import UserRepository
from vacuum_backend.services.device_gateway import RedisDeviceGateway
from vacuum_backend.services.machine_lock_service import MachineLockGuard
from vacuum_backend.services.machine_registry import MachineRegistry
from vacuum_backend.services.maintenance_tracker import MaintenanceTracker
from vacuum_backend.services.notification_dispatcher import NotificationDispatcher
from vacuum_backend.services.payment_service import PaymentService, PaymentOutcome, Immediate, Deferred
from vacuum_backend.services.redis_event_service import RedisEventService
from vacuum_backend.services.state_machines import SessionStateMachine
from vacuum_backend.utils.date_formatter import Clock, now_local, seconds_between

logger = logging.getLogger(__name__)


class SessionOrchestrator:
    """
    Coordinates registry, tracker, payments and device for usage sessions.
    """

    def __init__(
        self,
        machine_repository: MachineRepository,
        session_repository: SessionRepository,
        user_repository: UserRepository,
        registry: MachineRegistry,
        tracker: MaintenanceTracker,
        lock_guard: MachineLockGuard,
        payment_service: PaymentService,
        device_gateway: RedisDeviceGateway,
        dispatcher: NotificationDispatcher,
        event_service: RedisEventService,
        clock: Clock = now_local,
        min_minutes: Optional[int] = None,
        max_minutes: Optional[int] = None,
        pending_timeout_seconds: Optional[int] = None
    ):
        self.machine_repository = machine_repository
        self.session_repository = session_repository
        self.user_repository = user_repository
        self.registry = registry
        self.tracker = tracker
        self.lock_guard = lock_guard
        self.payment_service = payment_service
        self.device_gateway = device_gateway
        self.dispatcher = dispatcher
        self.event_service = event_service
        self.clock = clock
        self.min_minutes = min_minutes or config.MIN_SESSION_MINUTES
        self.max_minutes = max_minutes or config.MAX_SESSION_MINUTES
        self.pending_timeout_seconds = pending_timeout_seconds or config.PENDING_PAYMENT_TIMEOUT_SECONDS

    # ==================== AVAILABILITY ====================

    async def _ensure_available(
        self,
        machine_id: str,
        own_session_id: Optional[str] = None
    ) -> tuple[Machine, bool]:
        """
        Availability check. Caller holds the machine lock.

        A fresh-heartbeat offline machine is recovered to online here, and an
        idle machine past its interval without override is moved to
        maintenance.

        Args:
            machine_id: Machine to check
            own_session_id: Pending session being confirmed (not a competitor)

        Returns:
            (machine, maintenance_warning)

        Raises:
            MachineBusyError: Open session or in_use
            MaintenanceBlockedError: Maintenance without override
            HeartbeatRequiredError: Controller not reporting
        """
        machine = self.machine_repository.get_or_raise(machine_id)

        open_session = self.session_repository.find_open_for_machine(machine_id)
        if open_session is not None and open_session.id != own_session_id:
            raise MachineBusyError(
                machine_id,
                reason="Machine already has an open session",
                holder=open_session.id
            )

        if machine.status == MachineStatus.IN_USE:
            raise MachineBusyError(machine_id, reason="Machine is in use")

        if machine.status == MachineStatus.OFFLINE:
            self.registry.assert_heartbeat_fresh(machine)
            machine = await self.registry.transition(
                machine_id, MachineStatus.ONLINE, TransitionCause.HEARTBEAT_RECOVERY
            )

        if machine.status == MachineStatus.MAINTENANCE:
            if not machine.override.active:
                raise MaintenanceBlockedError(machine_id, machine.current_operating_minutes)
            self.registry.assert_heartbeat_fresh(machine)
            return machine, True

        self.registry.assert_heartbeat_fresh(machine)

        if self.tracker.requires_maintenance(machine):
            await self.tracker.enforce_threshold(machine, TransitionCause.MAINTENANCE_THRESHOLD)
            raise MaintenanceBlockedError(machine_id, machine.current_operating_minutes)

        return machine, machine.over_maintenance_threshold

    async def check_availability(self, machine_id: str) -> AvailabilityResponse:
        """
        Availability for the QR scan screen; never raises for an unavailable
        machine, the reason is returned instead.

        Raises:
            MachineNotFoundError: Unknown machine
        """
        machine = self.machine_repository.get_or_raise(machine_id)
        try:
            async with self.lock_guard.hold(machine_id, "check_availability"):
                machine, warning = await self._ensure_available(machine_id)
        except (ConflictError, StateError) as e:
            return AvailabilityResponse(
                available=False,
                reason=e.message,
                machine=self.machine_repository.get_or_raise(machine_id)
            )

        return AvailabilityResponse(
            available=True,
            reason="Machine requires maintenance but override is active" if warning else None,
            maintenance_warning=warning,
            machine=machine
        )

    # ==================== CREATE ====================

    def _validate_duration(self, duration_minutes: int, machine: Machine) -> None:
        limit = min(self.max_minutes, machine.max_duration_minutes)
        if not self.min_minutes <= duration_minutes <= limit:
            raise ValidationError(
                f"Duration must be between {self.min_minutes} and {limit} minutes",
                "duration_minutes",
                duration_minutes
            )

    async def create_session(
        self,
        user_id: str,
        machine_id: str,
        duration_minutes: int,
        payment_method: PaymentMethod
    ) -> SessionResponse:
        """
        Rent a machine, charging upfront.

        Args:
            user_id: Paying user
            machine_id: Machine to rent
            duration_minutes: Requested minutes
            payment_method: balance (settles now) or pix (settles via webhook)

        Returns:
            SessionResponse with an active session (balance) or a pending
            session plus PIX instructions

        Raises:
            ValidationError: Duration out of range
            UserNotFoundError / MachineNotFoundError: Unknown ids
            MachineBusyError: Locked, in use or open session (before any debit)
            MaintenanceBlockedError / HeartbeatRequiredError: Not available
            PaymentDeclinedError / PaymentGatewayError: Charge failed (session
                recorded as failed, machine untouched)
        """
        user = self.user_repository.get_or_raise(user_id)
        machine = self.machine_repository.get_or_raise(machine_id)
        self._validate_duration(duration_minutes, machine)

        async with self.lock_guard.hold(machine_id, f"create_session:{user_id}"):
            machine, warning = await self._ensure_available(machine_id)

            # Stored pending before the charge: a caller that gets the lock
            # after it expired mid-charge still finds the machine reserved.
            cost = Decimal(duration_minutes) * machine.price_per_minute
            session = self.session_repository.add(
                UsageSession(
                    user_id=user_id,
                    machine_id=machine_id,
                    requested_duration_minutes=duration_minutes,
                    cost=cost,
                    payment_method=payment_method,
                    created_at=self.clock()
                )
            )

            try:
                outcome = await self.payment_service.charge(
                    user,
                    cost,
                    payment_method,
                    description=f"Vacuum {machine.code} - {duration_minutes} min"
                )
            except Exception as e:
                reason = e.message if isinstance(e, RentalException) else str(e)
                await self._fail(session, f"payment error: {reason}")
                raise

            session = await self._confirm(session, outcome)

        if session.status == SessionStatus.ACTIVE:
            await self._send_activate(session)

        payment = None
        if isinstance(outcome, Deferred):
            payment = PaymentInstructions(
                payment_id=outcome.payment_id,
                amount=outcome.amount,
                qr_code=outcome.qr_code,
                qr_code_base64=outcome.qr_code_base64
            )

        logger.info(
            f"✅ Session {session.id} created on {machine.code} for user {user_id}: "
            f"{duration_minutes} min, cost {cost}, status {session.status.value}"
        )
        return SessionResponse(
            session=session,
            maintenance_warning=warning,
            payment=payment,
            message="Session started" if session.status == SessionStatus.ACTIVE else "Waiting for payment"
        )

    async def _confirm(self, session: UsageSession, outcome: PaymentOutcome) -> UsageSession:
        """
        Single dispatch point on the payment outcome. Caller holds the lock.

        Immediate → payment recorded, session activated.
        Deferred → payment recorded, session stays pending; the machine is untouched.
        """
        if isinstance(outcome, Immediate):
            stored = self.session_repository.update_fields(session.id, payment_id=outcome.transaction_id)
            return await self._activate(stored)

        if isinstance(outcome, Deferred):
            stored = self.session_repository.update_fields(session.id, payment_id=outcome.payment_id)
            await self.event_service.publish_session_status(stored, None)
            return stored

        raise TypeError(f"Unknown payment outcome: {outcome!r}")

    async def _activate(self, session: UsageSession) -> UsageSession:
        """pending → active and machine → in_use. Caller holds the lock."""
        machine = self.machine_repository.get_or_raise(session.machine_id)
        if machine.status == MachineStatus.MAINTENANCE:
            # Overridden maintenance machine passes through online on its way to in_use
            await self.registry.transition(machine.id, MachineStatus.ONLINE, TransitionCause.SESSION_ACTIVATION)
        await self.registry.transition(machine.id, MachineStatus.IN_USE, TransitionCause.SESSION_ACTIVATION)

        previous = session.status
        SessionStateMachine(session).apply("activate", SessionStatus.ACTIVE.value)
        updated = self.session_repository.update_fields(
            session.id,
            status=session.status,
            start_time=self.clock()
        )
        await self.event_service.publish_session_status(updated, previous)
        return updated

    async def _fail(self, session: UsageSession, reason: str) -> UsageSession:
        """pending → failed. Caller holds the lock."""
        previous = session.status
        SessionStateMachine(session).apply("fail", SessionStatus.FAILED.value)
        updated = self.session_repository.update_fields(
            session.id,
            status=session.status,
            failure_reason=reason,
            end_time=self.clock()
        )
        logger.warning(f"⚠️ Session {session.id} failed: {reason}")
        await self.event_service.publish_session_status(updated, previous)
        return updated

    # ==================== PAYMENT CONFIRMATION ====================

    async def confirm_payment(
        self,
        payment_id: str,
        status: PaymentStatus,
        amount: Decimal
    ) -> UsageSession:
        """
        Settle a deferred payment. Safe to call repeatedly with the same data.

        Sessions no longer pending are returned unchanged; an approval that
        arrives for a failed or cancelled session raises one refund alert.

        Raises:
            PaymentNotFoundError: No session for payment_id
            MachineBusyError: Machine locked (the gateway retries the callback)
        """
        session = self.session_repository.find_by_payment_id(payment_id)
        if session is None:
            raise PaymentNotFoundError(payment_id)

        if session.status != SessionStatus.PENDING:
            return await self._settled_payment(session, payment_id, status, amount)
        if status == PaymentStatus.PENDING:
            return session

        refund_reason = None
        settled_concurrently = False
        async with self.lock_guard.hold(session.machine_id, f"confirm_payment:{payment_id}"):
            session = self.session_repository.get_or_raise(session.id)
            if session.status != SessionStatus.PENDING:
                settled_concurrently = True
            elif status in (PaymentStatus.REJECTED, PaymentStatus.CANCELLED):
                session = await self._fail(session, f"payment {status.value}")
            elif amount < session.cost:
                refund_reason = f"it is below the session cost {session.cost}"
                session = await self._fail(session, f"paid amount {amount} below cost {session.cost}")
            else:
                try:
                    await self._ensure_available(session.machine_id, own_session_id=session.id)
                except (ConflictError, StateError) as e:
                    refund_reason = f"the machine became unavailable ({e.message})"
                    session = await self._fail(session, f"machine unavailable: {e.message}")
                else:
                    session = await self._activate(session)

        if settled_concurrently:
            return await self._settled_payment(session, payment_id, status, amount)
        if session.status == SessionStatus.ACTIVE:
            await self._send_activate(session)
        elif refund_reason:
            session = await self._flag_refund(
                session,
                f"Payment {payment_id} approved ({amount}) but {refund_reason}. "
                f"Session {session.id} failed; manual refund required."
            )
        return session

    async def reconcile_payment(self, payment_id: str) -> UsageSession:
        """
        Settle a deferred payment from the gateway's record of it.

        A payment notification only names the payment; its status and amount
        are read back from the gateway, never taken from the notification.

        Raises:
            PaymentNotFoundError: No deferred session for payment_id
            PaymentGatewayError: Lookup failed (the notifier retries)
        """
        session = self.session_repository.find_by_payment_id(payment_id)
        if session is None or session.payment_method != PaymentMethod.PIX:
            raise PaymentNotFoundError(payment_id)

        state = await self.payment_service.lookup(payment_id)
        logger.info(f"Payment {payment_id} at gateway: {state.status.value} ({state.amount})")
        return await self.confirm_payment(payment_id, state.status, state.amount)

    async def _settled_payment(
        self,
        session: UsageSession,
        payment_id: str,
        status: PaymentStatus,
        amount: Decimal
    ) -> UsageSession:
        """
        Callback for a session that is no longer pending.

        An approval for a failed or cancelled session means the customer paid
        for nothing: raise one refund alert. Anything else is a duplicate.
        """
        closed = session.status in (SessionStatus.FAILED, SessionStatus.CANCELLED)
        if status != PaymentStatus.APPROVED or not closed or session.refund_required:
            logger.info(f"Payment {payment_id} already settled (session {session.status.value}), ignoring")
            return session

        logger.error(f"❌ Payment {payment_id} approved after session {session.id} was {session.status.value}")
        return await self._flag_refund(
            session,
            f"Payment {payment_id} approved ({amount}) after session {session.id} was "
            f"{session.status.value}; manual refund required."
        )

    async def _flag_refund(self, session: UsageSession, message: str) -> UsageSession:
        """Mark a paid session as owed a refund and alert the operator once."""
        updated = self.session_repository.update_fields(session.id, refund_required=True)
        await self.dispatcher.emit(NotificationType.SYSTEM_ERROR, session.machine_id, message)
        return updated

    # ==================== CANCEL / TERMINATE ====================

    async def cancel_session(self, session_id: str) -> UsageSession:
        """
        Cancel a session still waiting for payment.

        Raises:
            InvalidTransitionError: Session not pending
        """
        session = self.session_repository.get_or_raise(session_id)
        async with self.lock_guard.hold(session.machine_id, f"cancel_session:{session_id}"):
            session = self.session_repository.get_or_raise(session_id)
            previous = session.status
            SessionStateMachine(session).apply("cancel", SessionStatus.CANCELLED.value)
            session = self.session_repository.update_fields(
                session_id,
                status=session.status,
                end_time=self.clock()
            )

        logger.info(f"Session {session_id} cancelled")
        await self.event_service.publish_session_status(session, previous)
        return session

    def _actual_minutes(
        self,
        session: UsageSession,
        cause: TerminationCause,
        reported_minutes: Optional[int],
        now: datetime
    ) -> int:
        requested = session.requested_duration_minutes

        if reported_minutes is not None and cause in (TerminationCause.TIMEOUT, TerminationCause.DEVICE_REPORT):
            minutes = reported_minutes
        elif cause == TerminationCause.TIMEOUT:
            minutes = requested
        else:
            elapsed = seconds_between(session.start_time, now) or 0
            minutes = math.ceil(max(0.0, elapsed) / 60)

        return max(0, min(minutes, requested))

    async def terminate_session(
        self,
        session_id: str,
        cause: TerminationCause,
        reported_minutes: Optional[int] = None
    ) -> UsageSession:
        """
        End an active session. Nothing is refunded.

        Args:
            session_id: Session to end
            cause: user_stop, timeout, admin_force or device_report
            reported_minutes: Minutes reported by the controller (if any)

        Returns:
            Completed session with actual_minutes_used

        Raises:
            InvalidTransitionError: Session not active
            MachineBusyError: Machine locked
        """
        session = self.session_repository.get_or_raise(session_id)

        async with self.lock_guard.hold(session.machine_id, f"terminate_session:{cause.value}"):
            session = self.session_repository.get_or_raise(session_id)
            if session.status != SessionStatus.ACTIVE:
                raise InvalidTransitionError(
                    f"Session '{session_id}' is {session.status.value}; only active sessions can be terminated",
                    subject_id=session_id,
                    current_state=session.status.value,
                    attempted_state=SessionStatus.COMPLETED.value
                )

            now = self.clock()
            actual = self._actual_minutes(session, cause, reported_minutes, now)

            previous = session.status
            SessionStateMachine(session).apply("complete", SessionStatus.COMPLETED.value)
            session = self.session_repository.update_fields(
                session_id,
                status=session.status,
                end_time=now,
                actual_minutes_used=actual,
                termination_cause=cause
            )
            machine = await self.tracker.release_after_session(session.machine_id, actual)

        logger.info(
            f"✅ Session {session_id} completed ({cause.value}): {actual}/"
            f"{session.requested_duration_minutes} min, machine now {machine.status.value}"
        )
        await self.event_service.publish_session_status(session, previous)

        if cause != TerminationCause.DEVICE_REPORT:
            await self._send_deactivate(session)
        return session

    # ==================== SWEEPS ====================

    async def expire_pending_sessions(self) -> list[str]:
        """
        Fail pending sessions whose payment never arrived.

        Returns:
            Ids of expired sessions
        """
        now = self.clock()
        cutoff = now - timedelta(seconds=self.pending_timeout_seconds)
        expired = []

        for session in self.session_repository.list_by_status(SessionStatus.PENDING):
            if session.created_at is None or session.created_at > cutoff:
                continue
            try:
                async with self.lock_guard.hold(session.machine_id, "expire_pending"):
                    current = self.session_repository.get_or_raise(session.id)
                    if current.status != SessionStatus.PENDING:
                        continue
                    await self._fail(current, "payment timeout")
            except MachineBusyError:
                logger.debug(f"Pending session {session.id} expiry skipped: machine locked")
                continue
            expired.append(session.id)

        if expired:
            logger.info(f"Expired {len(expired)} pending session(s)")
        return expired

    async def terminate_expired_sessions(self) -> list[str]:
        """
        Terminate active sessions past their requested duration (timeout).

        Returns:
            Ids of terminated sessions
        """
        now = self.clock()
        terminated = []

        for session in self.session_repository.list_by_status(SessionStatus.ACTIVE):
            if session.start_time is None:
                continue
            ends_at = session.start_time + timedelta(minutes=session.requested_duration_minutes)
            if ends_at > now:
                continue
            try:
                await self.terminate_session(session.id, TerminationCause.TIMEOUT)
            except MachineBusyError:
                logger.debug(f"Timeout of session {session.id} skipped: machine locked")
                continue
            except InvalidTransitionError:
                # Terminated concurrently
                continue
            terminated.append(session.id)

        return terminated

    # ==================== DEVICE ====================

    async def _send_activate(self, session: UsageSession) -> None:
        try:
            await self.device_gateway.activate(session.machine_id, session.requested_duration_minutes * 60)
        except DeviceCommandError as e:
            logger.error(f"❌ {e.message} (session {session.id})")
            await self.dispatcher.emit(
                NotificationType.SYSTEM_ERROR,
                session.machine_id,
                f"Activation failed for session {session.id}: {e.data.get('details')}"
            )

    async def _send_deactivate(self, session: UsageSession) -> None:
        try:
            await self.device_gateway.deactivate(session.machine_id)
        except DeviceCommandError as e:
            logger.error(f"❌ {e.message} (session {session.id})")
            await self.dispatcher.emit(
                NotificationType.SYSTEM_ERROR,
                session.machine_id,
                f"Deactivation failed for session {session.id}: {e.data.get('details')}"
            )

    # ==================== QUERIES ====================

    def get_session(self, session_id: str) -> UsageSession:
        return self.session_repository.get_or_raise(session_id)

    def get_active_session(self, machine_id: str) -> Optional[UsageSession]:
        self.machine_repository.get_or_raise(machine_id)
        return self.session_repository.find_active_for_machine(machine_id)

    def list_user_sessions(self, user_id: str, limit: int = 50) -> list[UsageSession]:
        self.user_repository.get_or_raise(user_id)
        return self.session_repository.list_by_user(user_id, limit)

    def session_stats(self) -> SessionStats:
        counts = self.session_repository.count_by_status()
        return SessionStats(
            total=sum(counts.values()),
            pending=counts[SessionStatus.PENDING],
            active=counts[SessionStatus.ACTIVE],
            completed=counts[SessionStatus.COMPLETED],
            failed=counts[SessionStatus.FAILED],
            cancelled=counts[SessionStatus.CANCELLED]
        )
