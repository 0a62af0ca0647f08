"""
Machine availability state machine.

Transition table:
- offline → online          heartbeat must be fresh
- online → in_use           session activation only
- in_use → online           session termination (heartbeat must be fresh)
- in_use → maintenance      session termination over threshold
- online → offline          stale heartbeat (or admin)
- in_use → offline          stale heartbeat while running
- online → maintenance      threshold crossed while idle / override disabled / admin
- maintenance → online      maintenance reset, override enabled, or activation of an
                            overridden machine (heartbeat must be fresh)

Everything else raises InvalidTransitionError.
"""

from datetime import datetime
from typing import Optional
import logging

from statemachine import State

from vacuum_backend.services.state_machines.base_state_machine import BaseModelStateMachine
from vacuum_backend.models.enums import MachineStatus, TransitionCause
from vacuum_backend.models.machine import Machine
from vacuum_backend.exceptions import HeartbeatRequiredError, InvalidTransitionError
from vacuum_backend.utils.date_formatter import seconds_between, now_local

logger = logging.getLogger(__name__)


class MachineStateMachine(BaseModelStateMachine):
    """
    States mirror MachineStatus; a new machine starts offline.
    """

    offline = State("Offline", value=MachineStatus.OFFLINE, initial=True)
    online = State("Online", value=MachineStatus.ONLINE)
    in_use = State("In use", value=MachineStatus.IN_USE)
    maintenance = State("Maintenance", value=MachineStatus.MAINTENANCE)

    to_online = (
        offline.to(online, validators="heartbeat_is_fresh")
        | in_use.to(online, validators="heartbeat_is_fresh")
        | maintenance.to(online, validators="heartbeat_is_fresh")
    )
    to_in_use = online.to(in_use, validators="activation_by_session")
    to_offline = online.to(offline) | in_use.to(offline)
    to_maintenance = online.to(maintenance) | in_use.to(maintenance)

    def __init__(self, machine: Machine, offline_threshold_seconds: int):
        """
        Args:
            machine: Machine whose status field holds the state
            offline_threshold_seconds: Max heartbeat age to go online
        """
        self.offline_threshold_seconds = offline_threshold_seconds
        super().__init__(machine.id, machine)

    def heartbeat_is_fresh(self, now: Optional[datetime] = None, **kwargs):
        """
        Validator for every transition into online.

        Raises:
            HeartbeatRequiredError: No heartbeat yet, or older than the threshold
        """
        last = self.model.last_heartbeat_at
        if last is None:
            raise HeartbeatRequiredError(
                self.subject_id, threshold_seconds=self.offline_threshold_seconds
            )

        age = seconds_between(last, now or now_local())
        if age >= self.offline_threshold_seconds:
            raise HeartbeatRequiredError(
                self.subject_id,
                age_seconds=int(age),
                threshold_seconds=self.offline_threshold_seconds
            )

    def activation_by_session(self, cause: Optional[TransitionCause] = None, **kwargs):
        """Only a session activation may put a machine in use."""
        if cause != TransitionCause.SESSION_ACTIVATION:
            raise InvalidTransitionError(
                f"Machine '{self.subject_id}' can only enter in_use through session activation",
                subject_id=self.subject_id,
                current_state=self.get_state_id(),
                attempted_state=MachineStatus.IN_USE.value
            )

    def after_transition(self, source: State, target: State, cause: Optional[TransitionCause] = None, **kwargs):
        logger.debug(
            f"Machine {self.subject_id}: {source.id} → {target.id} "
            f"(cause: {cause.value if cause else 'n/a'})"
        )
