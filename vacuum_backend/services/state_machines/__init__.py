"""
Status state machines.

- MachineStateMachine: online / offline / maintenance / in_use
- SessionStateMachine: pending → active → completed, pending → failed | cancelled

Both bind to the pydantic model's status field; services persist the result.
"""

from vacuum_backend.services.state_machines.machine_state_machine import MachineStateMachine
from vacuum_backend.services.state_machines.session_state_machine import SessionStateMachine

__all__ = ["MachineStateMachine", "SessionStateMachine"]
