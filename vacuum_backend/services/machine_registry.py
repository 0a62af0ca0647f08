"""
Machine registry: the single owner of machine status.

transition() is the only code path that changes Machine.status. It validates
the move against MachineStateMachine, persists it and broadcasts a
machine_status_changed event on the realtime channel (best effort).
"""
import logging
from datetime import datetime
from typing import Optional

from vacuum_backend.config import config
from vacuum_backend.exceptions import (
    MachineNotFoundError,
    HeartbeatRequiredError,
    InvalidTransitionError,
    MachineBusyError
)
from vacuum_backend.models.enums import MachineStatus, TransitionCause
from vacuum_backend.models.machine import Machine, RegisterMachineRequest, MachineStats
from vacuum_backend.repositories.machine_repository import MachineRepository
from vacuum_backend.services.machine_lock_service import MachineLockGuard
from vacuum_backend.services.redis_event_service import RedisEventService
from vacuum_backend.services.state_machines import MachineStateMachine
from vacuum_backend.utils.date_formatter import Clock, now_local, seconds_between

logger = logging.getLogger(__name__)


class MachineRegistry:
    """
    Registry of machines and their lifecycle.

    Attributes:
        repository: MachineRepository
        event_service: RedisEventService for status broadcasts
        lock_guard: MachineLockGuard for admin status changes
        offline_threshold_seconds: Max heartbeat age for a machine to be online
    """

    def __init__(
        self,
        repository: MachineRepository,
        event_service: RedisEventService,
        lock_guard: MachineLockGuard,
        clock: Clock = now_local,
        offline_threshold_seconds: Optional[int] = None
    ):
        self.repository = repository
        self.event_service = event_service
        self.lock_guard = lock_guard
        self.clock = clock
        self.offline_threshold_seconds = offline_threshold_seconds or config.OFFLINE_THRESHOLD_SECONDS

    # ==================== QUERIES ====================

    def register_machine(self, request: RegisterMachineRequest) -> Machine:
        """
        Add a machine to the registry. New machines start offline until
        their first heartbeat.
        """
        now = self.clock()
        machine = Machine(
            code=request.code.strip(),
            location=request.location,
            controller_id=request.controller_id,
            maintenance_interval_hours=request.maintenance_interval_hours,
            price_per_minute=request.price_per_minute,
            max_duration_minutes=request.max_duration_minutes,
            created_at=now,
            updated_at=now
        )
        stored = self.repository.add(machine)
        logger.info(f"✅ Machine registered: {stored.code} ({stored.id})")
        return stored

    def get_machine(self, machine_id: str) -> Machine:
        """
        Raises:
            MachineNotFoundError: Unknown id
        """
        return self.repository.get_or_raise(machine_id)

    def get_machine_by_code(self, code: str) -> Machine:
        """
        Lookup by QR code.

        Raises:
            MachineNotFoundError: Unknown code
        """
        machine = self.repository.get_by_code(code)
        if machine is None:
            raise MachineNotFoundError(code)
        return machine

    def list_machines(self, status: Optional[MachineStatus] = None) -> list[Machine]:
        return self.repository.list_all(status)

    def stats(self) -> MachineStats:
        counts = self.repository.count_by_status()
        return MachineStats(
            total=sum(counts.values()),
            online=counts[MachineStatus.ONLINE],
            offline=counts[MachineStatus.OFFLINE],
            maintenance=counts[MachineStatus.MAINTENANCE],
            in_use=counts[MachineStatus.IN_USE]
        )

    # ==================== HEARTBEAT FRESHNESS ====================

    def heartbeat_age_seconds(self, machine: Machine, now: Optional[datetime] = None) -> Optional[float]:
        """Seconds since the last heartbeat, None if never received."""
        return seconds_between(machine.last_heartbeat_at, now or self.clock())

    def heartbeat_is_fresh(self, machine: Machine, now: Optional[datetime] = None) -> bool:
        age = self.heartbeat_age_seconds(machine, now)
        return age is not None and age < self.offline_threshold_seconds

    def assert_heartbeat_fresh(self, machine: Machine, now: Optional[datetime] = None) -> None:
        """
        Raises:
            HeartbeatRequiredError: "never received" or "stale by N seconds"
        """
        age = self.heartbeat_age_seconds(machine, now)
        if age is None:
            raise HeartbeatRequiredError(machine.id, threshold_seconds=self.offline_threshold_seconds)
        if age >= self.offline_threshold_seconds:
            raise HeartbeatRequiredError(
                machine.id,
                age_seconds=int(age),
                threshold_seconds=self.offline_threshold_seconds
            )

    # ==================== TRANSITIONS ====================

    async def transition(
        self,
        machine_id: str,
        target: MachineStatus,
        cause: TransitionCause
    ) -> Machine:
        """
        Move a machine to target status.

        Callers hold the machine lock. A transition to the current status is
        a no-op and is not broadcast.

        Args:
            machine_id: Machine to transition
            target: Desired status
            cause: Why the status changes (recorded in the broadcast)

        Returns:
            Updated machine

        Raises:
            MachineNotFoundError: Unknown machine
            InvalidTransitionError: Not in the transition table, or in_use
                requested by anything other than a session activation
            HeartbeatRequiredError: Going online without a recent heartbeat
        """
        machine = self.repository.get_or_raise(machine_id)
        previous = machine.status
        if previous == target:
            return machine

        now = self.clock()
        state_machine = MachineStateMachine(machine, self.offline_threshold_seconds)
        state_machine.apply(f"to_{target.value}", target.value, now=now, cause=cause)

        updated = self.repository.update_fields(machine_id, status=machine.status, updated_at=now)
        logger.info(
            f"Machine {updated.code}: {previous.value} → {updated.status.value} (cause: {cause.value})"
        )

        await self.event_service.publish_machine_status(updated, previous, cause)
        return updated

    async def change_status(self, machine_id: str, target: MachineStatus, admin_id: str) -> Machine:
        """
        Admin status change inside the machine's critical section.

        Raises:
            InvalidTransitionError: target is in_use
            MachineBusyError: Machine locked or running a session
        """
        if target == MachineStatus.IN_USE:
            raise InvalidTransitionError(
                "in_use can only be set by a session activation",
                subject_id=machine_id,
                attempted_state=target.value
            )

        async with self.lock_guard.hold(machine_id, f"admin_status:{admin_id}"):
            machine = self.repository.get_or_raise(machine_id)
            if machine.status == MachineStatus.IN_USE:
                raise MachineBusyError(
                    machine_id,
                    reason="Machine is running a session; terminate it first"
                )

            logger.info(f"Admin {admin_id} requested {machine.code} → {target.value}")
            return await self.transition(machine_id, target, TransitionCause.ADMIN)
