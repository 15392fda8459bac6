"""Lifecycle states for transactions and holds.

Both lifecycles are explicit enums with a transition table; every status
change in the engine goes through `advance_transaction` or `advance_hold`.
"Overdue" is not a state: it is derived from the due date at read time.
"""

from enum import Enum

from patterns.workflow_states import TransitionNotAllowed, TransitionTable
from verticals.circulation.errors import InvalidStateTransition


# ---------------------------------------------------------------------------
# State definitions
# ---------------------------------------------------------------------------

class TransactionType(str, Enum):
    BORROW = "borrow"
    RESERVE = "reserve"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class HoldStatus(str, Enum):
    ACTIVE = "active"      # waiting in the queue
    READY = "ready"        # copy set aside, awaiting pickup
    EXPIRED = "expired"    # picked up, or pickup/queue deadline passed
    CANCELLED = "cancelled"


class ReturnCondition(str, Enum):
    GOOD = "good"
    DAMAGED = "damaged"
    LOST = "lost"


OPEN_HOLD_STATUSES = (HoldStatus.ACTIVE, HoldStatus.READY)
OPEN_TRANSACTION_STATUSES = (TransactionStatus.PENDING, TransactionStatus.ACTIVE)


# ---------------------------------------------------------------------------
# Transition rules
# ---------------------------------------------------------------------------

TRANSACTION_TRANSITIONS = TransitionTable("transaction", {
    TransactionStatus.PENDING: [
        TransactionStatus.ACTIVE,
        TransactionStatus.REJECTED,
        TransactionStatus.CANCELLED,
    ],
    TransactionStatus.ACTIVE: [TransactionStatus.COMPLETED],
    TransactionStatus.COMPLETED: [],  # terminal
    TransactionStatus.REJECTED: [],   # terminal
    TransactionStatus.CANCELLED: [],  # terminal
})

HOLD_TRANSITIONS = TransitionTable("hold", {
    HoldStatus.ACTIVE: [HoldStatus.READY, HoldStatus.CANCELLED, HoldStatus.EXPIRED],
    HoldStatus.READY: [HoldStatus.EXPIRED, HoldStatus.CANCELLED],
    HoldStatus.EXPIRED: [],    # terminal
    HoldStatus.CANCELLED: [],  # terminal
})


def _require(table: TransitionTable, entity, to_state: Enum) -> None:
    try:
        table.require(entity.status, to_state)
    except TransitionNotAllowed as exc:
        raise InvalidStateTransition(
            str(exc),
            {
                "id": entity.id,
                "from": exc.from_state.value,
                "to": exc.to_state.value,
                "allowed": [s.value for s in exc.allowed],
            },
        ) from exc


def _apply(table: TransitionTable, entity, to_state: Enum) -> None:
    _require(table, entity, to_state)
    entity.status = to_state


def require_transaction(txn, to_state: TransactionStatus) -> None:
    """Raise InvalidStateTransition unless txn may move to `to_state`. Does not mutate."""
    _require(TRANSACTION_TRANSITIONS, txn, to_state)


def advance_transaction(txn, to_state: TransactionStatus) -> None:
    """Move a Transaction along its lifecycle or raise InvalidStateTransition."""
    _apply(TRANSACTION_TRANSITIONS, txn, to_state)


def advance_hold(hold, to_state: HoldStatus) -> None:
    """Move a Hold along its lifecycle or raise InvalidStateTransition."""
    _apply(HOLD_TRANSITIONS, hold, to_state)
