"""Enum-based workflow state machine pattern.

Defines workflow states as Python enums with an explicit transition table
enforced in one place. Entities never assign a status directly; they ask the
table, which rejects any edge it does not list.

Example::

    class DoorState(str, Enum):
        OPEN = "open"
        CLOSED = "closed"

    DOOR = TransitionTable("door", {
        DoorState.OPEN: [DoorState.CLOSED],
        DoorState.CLOSED: [DoorState.OPEN],
    })
    DOOR.require(DoorState.OPEN, DoorState.CLOSED)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar


StateT = TypeVar("StateT", bound=Enum)


class TransitionNotAllowed(ValueError):
    """Raised when a transition is not in the table."""

    def __init__(self, workflow: str, from_state: Enum, to_state: Enum, allowed: list[Enum]):
        self.workflow = workflow
        self.from_state = from_state
        self.to_state = to_state
        self.allowed = allowed
        allowed_names = [s.value for s in allowed]
        super().__init__(
            f"Cannot transition {workflow} from {from_state.value} to {to_state.value}. "
            f"Allowed: {allowed_names}"
        )


@dataclass
class WorkflowTransition:
    """Record of a single state transition."""

    from_state: str
    to_state: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)


class TransitionTable(Generic[StateT]):
    """Allowed transitions: {current_state: [allowed_next_states]}."""

    def __init__(self, workflow: str, transitions: dict[StateT, list[StateT]]):
        self.workflow = workflow
        self._transitions = transitions

    def allowed(self, from_state: StateT) -> list[StateT]:
        return list(self._transitions.get(from_state, []))

    def can_transition(self, from_state: StateT, to_state: StateT) -> bool:
        """Check if a transition is allowed from the current state."""
        return to_state in self._transitions.get(from_state, [])

    def is_terminal(self, state: StateT) -> bool:
        """A state with no outgoing edges."""
        return len(self._transitions.get(state, [])) == 0

    def require(
        self,
        from_state: StateT,
        to_state: StateT,
        metadata: dict[str, Any] | None = None,
    ) -> WorkflowTransition:
        """Validate a transition.

        Raises TransitionNotAllowed if the edge is not in the table.
        """
        if not self.can_transition(from_state, to_state):
            raise TransitionNotAllowed(
                self.workflow, from_state, to_state, self.allowed(from_state)
            )
        return WorkflowTransition(
            from_state=from_state.value,
            to_state=to_state.value,
            metadata=metadata or {},
        )
