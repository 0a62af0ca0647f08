"""
Base state machine bound to a domain model.

The state lives in the model's status field (python-statemachine model
binding), so the machine is rebuilt from whatever the repository returned
and the resulting status is persisted by the caller.
"""

from statemachine import StateMachine
from statemachine.exceptions import TransitionNotAllowed

from vacuum_backend.exceptions import InvalidTransitionError


class BaseModelStateMachine(StateMachine):
    """
    Base class for status state machines.

    Subclasses define states whose values are the status enum members and
    events named after their target state.
    """

    def __init__(self, subject_id: str, model, state_field: str = "status"):
        """
        Args:
            subject_id: Identifier used in errors and logs
            model: Pydantic model holding the current status
            state_field: Attribute of model with the status value
        """
        self.subject_id = subject_id
        super().__init__(model=model, state_field=state_field)

    def get_state_id(self) -> str:
        """String id of the current state (e.g. "online", "pending")."""
        return self.current_state.id

    def apply(self, event: str, attempted_state: str, **kwargs):
        """
        Send an event, translating library rejections into domain errors.

        Args:
            event: Event name
            attempted_state: Target status used in the error payload
            **kwargs: Event arguments forwarded to validators/callbacks

        Raises:
            InvalidTransitionError: The current state has no such transition
        """
        current = self.get_state_id()
        try:
            return self.send(event, **kwargs)
        except TransitionNotAllowed:
            raise InvalidTransitionError(
                f"Transition {current} → {attempted_state} not allowed for '{self.subject_id}'",
                subject_id=self.subject_id,
                current_state=current,
                attempted_state=attempted_state
            )
