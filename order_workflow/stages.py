"""
Order lifecycle state machine: stages, actor roles and the table of legal (from, to, role) moves.
The table is built once from a literal list and never mutated; the engine receives it by reference.
"""
from enum import Enum
from typing import Iterable, NamedTuple


class Stage(str, Enum):
    PLACED = "PLACED"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    PICKED_UP = "PICKED_UP"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class ActorRole(str, Enum):
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    DRIVER = "driver"
    ADMIN = "admin"


class Transition(NamedTuple):
    from_stage: Stage
    to_stage: Stage
    actor_role: ActorRole


class TransitionTableError(Exception):
    """Raised when a transition table references an undeclared stage or role."""


INITIAL_STAGE = Stage.PLACED

TRANSITIONS: tuple[Transition, ...] = (
    # restaurant confirms; restaurant or customer may cancel before preparation starts
    Transition(Stage.PLACED, Stage.CONFIRMED, ActorRole.RESTAURANT),
    Transition(Stage.PLACED, Stage.CANCELLED, ActorRole.RESTAURANT),
    Transition(Stage.PLACED, Stage.CANCELLED, ActorRole.CUSTOMER),
    Transition(Stage.CONFIRMED, Stage.PREPARING, ActorRole.RESTAURANT),
    Transition(Stage.CONFIRMED, Stage.CANCELLED, ActorRole.RESTAURANT),
    Transition(Stage.CONFIRMED, Stage.CANCELLED, ActorRole.CUSTOMER),
    Transition(Stage.PREPARING, Stage.READY_FOR_PICKUP, ActorRole.RESTAURANT),
    # driver claims the order, then only that driver may deliver it
    Transition(Stage.READY_FOR_PICKUP, Stage.PICKED_UP, ActorRole.DRIVER),
    Transition(Stage.PICKED_UP, Stage.DELIVERED, ActorRole.DRIVER),
)

# Entering one of these stages assigns the order to the acting agent.
CLAIM_STAGES: frozenset[Stage] = frozenset({Stage.PICKED_UP})

# Moves that only the order's assigned agent may make.
ASSIGNED_AGENT_ONLY: frozenset[tuple[Stage, Stage]] = frozenset({
    (Stage.PICKED_UP, Stage.DELIVERED),
})


class TransitionTable:
    """Immutable set of legal moves with O(1) lookups."""

    __slots__ = ("_transitions", "_allowed", "_next", "_entering", "_initial")

    def __init__(self, transitions: Iterable[Transition], initial_stage: Stage = INITIAL_STAGE):
        transitions = tuple(Transition(*t) for t in transitions)
        if not isinstance(initial_stage, Stage):
            raise TransitionTableError(f"initial stage {initial_stage!r} is not a declared Stage")
        for t in transitions:
            if not isinstance(t.from_stage, Stage) or not isinstance(t.to_stage, Stage):
                raise TransitionTableError(f"transition {t!r} references an undeclared stage")
            if not isinstance(t.actor_role, ActorRole):
                raise TransitionTableError(f"transition {t!r} references an undeclared actor role")

        next_stages: dict[Stage, set[Stage]] = {stage: set() for stage in Stage}
        entering: dict[Stage, set[ActorRole]] = {stage: set() for stage in Stage}
        for t in transitions:
            next_stages[t.from_stage].add(t.to_stage)
            entering[t.to_stage].add(t.actor_role)

        self._transitions = transitions
        self._allowed = frozenset(transitions)
        self._next = {stage: frozenset(targets) for stage, targets in next_stages.items()}
        self._entering = {stage: frozenset(roles) for stage, roles in entering.items()}
        self._initial = initial_stage

    @property
    def initial_stage(self) -> Stage:
        return self._initial

    def is_allowed(self, from_stage: Stage, to_stage: Stage, actor_role: ActorRole) -> bool:
        """True iff the exact (from, to, role) triple is declared."""
        return (from_stage, to_stage, actor_role) in self._allowed

    def legal_next_stages(self, from_stage: Stage) -> frozenset[Stage]:
        """Union of targets reachable from from_stage, across all roles."""
        return self._next.get(from_stage, frozenset())

    def can_enter(self, to_stage: Stage, actor_role: ActorRole) -> bool:
        """True if actor_role may move an order into to_stage from at least one stage."""
        return actor_role in self._entering.get(to_stage, frozenset())

    def is_terminal(self, stage: Stage) -> bool:
        return not self.legal_next_stages(stage)

    def terminal_stages(self) -> list[Stage]:
        return [stage for stage in Stage if self.is_terminal(stage)]

    def transitions(self) -> tuple[Transition, ...]:
        return self._transitions

    def __len__(self) -> int:
        return len(self._allowed)

    def __contains__(self, triple) -> bool:
        return tuple(triple) in self._allowed


DEFAULT_TABLE = TransitionTable(TRANSITIONS)
