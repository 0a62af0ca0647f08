"""
Usage session state machine.

- pending → active      payment settled, machine activated
- pending → failed      payment rejected/expired or machine lost meanwhile
- pending → cancelled   user gave up before paying
- active → completed    session terminated (any cause)

completed, failed and cancelled are final.
"""

from statemachine import State

from vacuum_backend.services.state_machines.base_state_machine import BaseModelStateMachine
from vacuum_backend.models.enums import SessionStatus
from vacuum_backend.models.session import UsageSession


class SessionStateMachine(BaseModelStateMachine):

    pending = State("Pending", value=SessionStatus.PENDING, initial=True)
    active = State("Active", value=SessionStatus.ACTIVE)
    completed = State("Completed", value=SessionStatus.COMPLETED, final=True)
    failed = State("Failed", value=SessionStatus.FAILED, final=True)
    cancelled = State("Cancelled", value=SessionStatus.CANCELLED, final=True)

    activate = pending.to(active)
    complete = active.to(completed)
    fail = pending.to(failed)
    cancel = pending.to(cancelled)

    def __init__(self, session: UsageSession):
        super().__init__(session.id, session)
