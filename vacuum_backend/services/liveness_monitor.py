"""
Liveness monitor: heartbeat intake and stale-machine detection.

Controllers heartbeat every ~30 seconds. tick() runs on a fixed interval and
moves every online or in_use machine whose last heartbeat is older than
OFFLINE_THRESHOLD_SECONDS to offline, emitting one machine_offline
notification per transition. Machines already offline are skipped, and a
machine whose lock is held is retried on the next tick.

Heartbeat recovery policy:
- explicit (default): a heartbeat never flips offline back to online; the
  next availability check does it
- auto: the heartbeat itself recovers the machine
"""
import logging
from datetime import datetime
from typing import Optional

from vacuum_backend.config import config
from vacuum_backend.exceptions import MachineBusyError, HeartbeatRequiredError
from vacuum_backend.models.enums import MachineStatus, TransitionCause, NotificationType
from vacuum_backend.models.machine import Machine
from vacuum_backend.repositories.machine_repository import MachineRepository
from vacuum_backend.services.machine_lock_service import MachineLockGuard
from vacuum_backend.services.machine_registry import MachineRegistry
from vacuum_backend.services.notification_dispatcher import NotificationDispatcher
from vacuum_backend.utils.date_formatter import Clock, now_local, ensure_aware, seconds_between

logger = logging.getLogger(__name__)

RECOVERY_EXPLICIT = "explicit"
RECOVERY_AUTO = "auto"


class LivenessMonitor:

    def __init__(
        self,
        machine_repository: MachineRepository,
        registry: MachineRegistry,
        lock_guard: MachineLockGuard,
        dispatcher: NotificationDispatcher,
        clock: Clock = now_local,
        offline_threshold_seconds: Optional[int] = None,
        recovery_policy: Optional[str] = None
    ):
        self.machine_repository = machine_repository
        self.registry = registry
        self.lock_guard = lock_guard
        self.dispatcher = dispatcher
        self.clock = clock
        self.offline_threshold_seconds = offline_threshold_seconds or config.OFFLINE_THRESHOLD_SECONDS
        self.recovery_policy = recovery_policy or config.HEARTBEAT_RECOVERY_POLICY

    async def record_heartbeat(
        self,
        machine_id: str,
        reported_at: Optional[datetime] = None,
        controller_id: Optional[str] = None,
        temperature: Optional[float] = None
    ) -> Machine:
        """
        Store a controller heartbeat.

        Not lock-scoped: it only touches heartbeat fields and never moves
        last_heartbeat_at backwards. Timestamps from the future (device clock
        skew) are clamped to now.

        Returns:
            Updated machine
        """
        now = self.clock()
        reported_at = ensure_aware(reported_at) if reported_at else now
        if reported_at > now:
            reported_at = now

        machine = self.machine_repository.record_heartbeat(
            machine_id,
            reported_at,
            temperature=temperature,
            controller_id=controller_id
        )
        logger.debug(f"Heartbeat from {machine.code} at {reported_at.isoformat()}")

        if self.recovery_policy == RECOVERY_AUTO and machine.status == MachineStatus.OFFLINE:
            machine = await self._recover(machine)
        return machine

    async def _recover(self, machine: Machine) -> Machine:
        try:
            async with self.lock_guard.hold(machine.id, "heartbeat_recovery"):
                return await self.registry.transition(
                    machine.id, MachineStatus.ONLINE, TransitionCause.HEARTBEAT_RECOVERY
                )
        except MachineBusyError:
            logger.debug(f"Recovery of {machine.code} skipped: machine locked")
        except HeartbeatRequiredError as e:
            logger.debug(f"Recovery of {machine.code} skipped: {e.message}")
        return self.machine_repository.get_or_raise(machine.id)

    def _is_stale(self, machine: Machine, now: datetime) -> bool:
        age = seconds_between(machine.last_heartbeat_at, now)
        return age is None or age > self.offline_threshold_seconds

    async def tick(self, now: Optional[datetime] = None) -> list[str]:
        """
        One liveness sweep.

        Args:
            now: Sweep time (defaults to clock)

        Returns:
            Ids of machines moved to offline in this sweep
        """
        now = now or self.clock()
        candidates = self.machine_repository.list_by_statuses((MachineStatus.ONLINE, MachineStatus.IN_USE))
        marked_offline = []

        for candidate in candidates:
            if not self._is_stale(candidate, now):
                continue

            try:
                async with self.lock_guard.hold(candidate.id, "liveness_monitor"):
                    machine = self.machine_repository.get_or_raise(candidate.id)
                    if machine.status not in (MachineStatus.ONLINE, MachineStatus.IN_USE):
                        continue
                    if not self._is_stale(machine, now):
                        continue
                    previous = machine.status
                    machine = await self.registry.transition(
                        machine.id, MachineStatus.OFFLINE, TransitionCause.HEARTBEAT_STALE
                    )
            except MachineBusyError:
                logger.debug(f"Liveness check for {candidate.code} skipped: machine locked")
                continue

            marked_offline.append(machine.id)
            age = seconds_between(machine.last_heartbeat_at, now)
            detail = "no heartbeat received" if age is None else f"last heartbeat {int(age)}s ago"
            logger.warning(f"⚠️ Machine {machine.code} marked offline ({detail}, was {previous.value})")

            await self.dispatcher.emit(
                NotificationType.MACHINE_OFFLINE,
                machine.id,
                f"Machine {machine.code} ({machine.location or 'no location'}) stopped reporting: {detail}"
            )

        if marked_offline:
            logger.info(f"Liveness sweep: {len(marked_offline)} machine(s) marked offline")
        return marked_offline
