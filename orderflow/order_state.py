"""
Order lifecycle state machine. Valid transitions enforce business rules.
"""
import random
from dataclasses import dataclass
from typing import Literal

# Current status -> allowed next statuses
VALID_TRANSITIONS: dict[str, list[str]] = {
    "validating": ["preparating", "cancelled"],
    "preparating": ["waitingDelivery"],
    "waitingDelivery": ["delivering"],
    "delivering": ["completed"],
    "completed": [],  # terminal
    "cancelled": [],  # terminal
}

INITIAL_STATE = "validating"
TERMINAL_STATES = frozenset({"completed", "cancelled"})
# Deliverer assignment does not change status; allowed only while the order is in one of these.
ASSIGNABLE_STATES = frozenset({"preparating", "waitingDelivery"})

VALIDATION_CODE_MIN = 100000
VALIDATION_CODE_MAX = 999999

Guard = Literal["owner", "any_deliverer", "assigned_deliverer"]
# Who the stored deliverer may be for the write to apply:
#   any            not constrained
#   unset          no deliverer yet (the actor claims the order)
#   unset_or_actor no deliverer yet, or the actor (an unassigned actor claims it)
#   actor          the actor only
DelivererPrecondition = Literal["any", "unset", "unset_or_actor", "actor"]


@dataclass(frozen=True)
class Transition:
    name: str
    from_states: frozenset[str]
    to_state: str | None  # None: status unchanged
    guard: Guard
    deliverer: DelivererPrecondition = "any"
    issues_code: bool = False  # draws a fresh validation code

    @property
    def claims_deliverer(self) -> bool:
        return self.deliverer in ("unset", "unset_or_actor")


def _sources(to_state: str) -> frozenset[str]:
    """Statuses with an edge to to_state."""
    return frozenset(s for s, nxt in VALID_TRANSITIONS.items() if to_state in nxt)


def _edge(name: str, to_state: str, guard: Guard, **kwargs) -> Transition:
    return Transition(name, _sources(to_state), to_state, guard, **kwargs)


ACCEPT = _edge("accept", "preparating", "owner")
DECLINE = _edge("decline", "cancelled", "owner")
READY = _edge("ready", "waitingDelivery", "owner")
ASSIGN_DELIVERER = Transition("assign_deliverer", ASSIGNABLE_STATES, None, "any_deliverer", deliverer="unset")
BEGIN_DELIVERY = _edge("begin_delivery", "delivering", "any_deliverer", deliverer="unset_or_actor", issues_code=True)
COMPLETE = _edge("complete", "completed", "assigned_deliverer", deliverer="actor")

TRANSITIONS: dict[str, Transition] = {
    t.name: t for t in (ACCEPT, DECLINE, READY, ASSIGN_DELIVERER, BEGIN_DELIVERY, COMPLETE)
}


def is_valid_transition(current_state: str, new_state: str) -> bool:
    """True if new_state is allowed after current_state."""
    allowed = VALID_TRANSITIONS.get(current_state, [])
    return new_state in allowed


def generate_validation_code() -> int:
    """Six-digit hand-off code. Human-readable check only, not a secret."""
    return random.randint(VALIDATION_CODE_MIN, VALIDATION_CODE_MAX)
