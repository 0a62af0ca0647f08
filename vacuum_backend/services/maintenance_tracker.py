"""
Maintenance tracker: operating-minute accounting and threshold enforcement.

Owns Machine.current_operating_minutes, maintenance_flagged and override.
The counter only grows, except through reset_maintenance().

A crossing of maintenance_interval_hours without an active override moves an
idle or running machine to maintenance and emits exactly one
maintenance_required notification; maintenance_flagged suppresses repeats
until the next reset.
"""
import logging
from typing import Optional

from vacuum_backend.exceptions import MachineBusyError, ValidationError
from vacuum_backend.models.enums import (
    MachineStatus,
    TransitionCause,
    NotificationType,
    MaintenanceType
)
from vacuum_backend.models.machine import Machine, MaintenanceOverride, ResetMaintenanceRequest
from vacuum_backend.models.maintenance import MaintenanceLogEntry
from vacuum_backend.repositories.machine_repository import MachineRepository
from vacuum_backend.repositories.maintenance_log_repository import MaintenanceLogRepository
from vacuum_backend.services.machine_lock_service import MachineLockGuard
from vacuum_backend.services.machine_registry import MachineRegistry
from vacuum_backend.services.notification_dispatcher import NotificationDispatcher
from vacuum_backend.utils.date_formatter import Clock, now_local

logger = logging.getLogger(__name__)


class MaintenanceTracker:

    def __init__(
        self,
        machine_repository: MachineRepository,
        log_repository: MaintenanceLogRepository,
        registry: MachineRegistry,
        dispatcher: NotificationDispatcher,
        lock_guard: MachineLockGuard,
        clock: Clock = now_local
    ):
        self.machine_repository = machine_repository
        self.log_repository = log_repository
        self.registry = registry
        self.dispatcher = dispatcher
        self.lock_guard = lock_guard
        self.clock = clock

    @staticmethod
    def requires_maintenance(machine: Machine) -> bool:
        """Over the interval and not covered by an admin override."""
        return machine.over_maintenance_threshold and not machine.override.active

    def machines_requiring_maintenance(self) -> list[Machine]:
        """
        Machines at or past their interval, overridden ones included so the
        admin dashboard still lists them.
        """
        return [m for m in self.machine_repository.list_all() if m.over_maintenance_threshold]

    def get_maintenance_logs(self, machine_id: str) -> list[MaintenanceLogEntry]:
        self.machine_repository.get_or_raise(machine_id)
        return self.log_repository.list_for_machine(machine_id)

    async def _flag_crossing(self, machine: Machine) -> Machine:
        """Emit maintenance_required once per crossing."""
        if machine.maintenance_flagged:
            return machine

        machine = self.machine_repository.update_fields(machine.id, maintenance_flagged=True)
        await self.dispatcher.emit(
            NotificationType.MAINTENANCE_REQUIRED,
            machine.id,
            f"Machine {machine.code} ({machine.location or 'no location'}) reached "
            f"{machine.operating_hours:.1f}h of operation "
            f"(interval: {machine.maintenance_interval_hours}h)"
        )
        return machine

    async def enforce_threshold(self, machine: Machine, cause: TransitionCause) -> Machine:
        """
        Move an online/in_use machine that requires maintenance to maintenance.

        Caller holds the machine lock.
        """
        if not self.requires_maintenance(machine):
            return machine

        if machine.status in (MachineStatus.ONLINE, MachineStatus.IN_USE):
            machine = await self.registry.transition(machine.id, MachineStatus.MAINTENANCE, cause)
            logger.warning(
                f"⚠️ Machine {machine.code} moved to maintenance "
                f"({machine.current_operating_minutes} min >= {machine.maintenance_interval_hours}h)"
            )
        return await self._flag_crossing(machine)

    async def increment_usage(self, machine_id: str, minutes: int) -> Machine:
        """
        Add operating minutes. Caller holds the machine lock.

        Args:
            machine_id: Machine that ran
            minutes: Minutes actually used (>= 0)

        Returns:
            Updated machine (possibly moved to maintenance)

        Raises:
            ValidationError: Negative minutes
        """
        if minutes < 0:
            raise ValidationError("Usage minutes cannot be negative", "minutes", minutes)

        machine = self.machine_repository.get_or_raise(machine_id)
        total = machine.current_operating_minutes + minutes
        machine = self.machine_repository.update_fields(
            machine_id,
            current_operating_minutes=total,
            updated_at=self.clock()
        )
        logger.info(f"Machine {machine.code}: +{minutes} min (total {total} min)")

        return await self.enforce_threshold(machine, TransitionCause.MAINTENANCE_THRESHOLD)

    async def release_after_session(self, machine_id: str, minutes: int) -> Machine:
        """
        Record session usage and release the machine.

        Outcome for an in_use machine: maintenance if the threshold was
        crossed without override, otherwise online (fresh heartbeat) or
        offline (heartbeat went stale during the session). A machine the
        liveness monitor already took offline stays offline.
        """
        machine = await self.increment_usage(machine_id, minutes)

        if machine.status != MachineStatus.IN_USE:
            return machine

        if self.registry.heartbeat_is_fresh(machine):
            return await self.registry.transition(
                machine_id, MachineStatus.ONLINE, TransitionCause.SESSION_TERMINATION
            )
        return await self.registry.transition(
            machine_id, MachineStatus.OFFLINE, TransitionCause.HEARTBEAT_STALE
        )

    async def reset_maintenance(self, machine_id: str, request: ResetMaintenanceRequest) -> MaintenanceLogEntry:
        """
        Zero the counter after maintenance and bring the machine back online.

        Heartbeat freshness is checked before anything is mutated.

        Raises:
            MachineBusyError: Machine locked or running a session
            HeartbeatRequiredError: Controller not reporting
        """
        async with self.lock_guard.hold(machine_id, f"maintenance_reset:{request.admin_id}"):
            machine = self.machine_repository.get_or_raise(machine_id)
            if machine.status == MachineStatus.IN_USE:
                raise MachineBusyError(machine_id, reason="Cannot reset maintenance while a session is running")

            self.registry.assert_heartbeat_fresh(machine)

            now = self.clock()
            minutes_at_reset = machine.current_operating_minutes
            self.machine_repository.update_fields(
                machine_id,
                current_operating_minutes=0,
                maintenance_flagged=False,
                override=MaintenanceOverride(),
                last_maintenance_at=now,
                updated_at=now
            )
            await self.registry.transition(machine_id, MachineStatus.ONLINE, TransitionCause.MAINTENANCE_RESET)

            entry = self.log_repository.append(
                MaintenanceLogEntry(
                    machine_id=machine_id,
                    type=request.type or MaintenanceType.OTHER,
                    performed_by=request.admin_id,
                    description=request.description,
                    cost=request.cost,
                    parts_replaced=list(request.parts_replaced),
                    operating_minutes_at_reset=minutes_at_reset,
                    timestamp=now
                )
            )

        logger.info(
            f"✅ Maintenance reset for {machine.code} by {request.admin_id} "
            f"({minutes_at_reset} min cleared)"
        )
        return entry

    async def set_override(
        self,
        machine_id: str,
        active: bool,
        reason: Optional[str],
        admin_id: str
    ) -> Machine:
        """
        Enable or disable the maintenance override.

        Enabling returns a maintenance machine to online (heartbeat required,
        checked before mutation). Disabling while over threshold forces
        maintenance now, or at session termination for an in_use machine.

        Raises:
            ValidationError: Enabling without a reason
            MachineBusyError: Machine locked
            HeartbeatRequiredError: Enabling on a maintenance machine with no heartbeat
        """
        if active and not (reason and reason.strip()):
            raise ValidationError("A reason is required to enable the maintenance override", "reason", reason)

        async with self.lock_guard.hold(machine_id, f"override:{admin_id}"):
            machine = self.machine_repository.get_or_raise(machine_id)
            now = self.clock()

            if active:
                if machine.status == MachineStatus.MAINTENANCE:
                    self.registry.assert_heartbeat_fresh(machine)

                machine = self.machine_repository.update_fields(
                    machine_id,
                    override=MaintenanceOverride(active=True, reason=reason, by=admin_id, at=now),
                    updated_at=now
                )
                if machine.status == MachineStatus.MAINTENANCE:
                    machine = await self.registry.transition(
                        machine_id, MachineStatus.ONLINE, TransitionCause.OVERRIDE_ENABLED
                    )
                logger.warning(f"⚠️ Maintenance override enabled on {machine.code} by {admin_id}: {reason}")
                return machine

            machine = self.machine_repository.update_fields(
                machine_id,
                override=MaintenanceOverride(active=False, reason=reason, by=admin_id, at=now),
                updated_at=now
            )
            logger.info(f"Maintenance override disabled on {machine.code} by {admin_id}")

            if machine.status == MachineStatus.IN_USE:
                # Enforced by increment_usage when the session ends
                return machine
            return await self.enforce_threshold(machine, TransitionCause.OVERRIDE_DISABLED)
