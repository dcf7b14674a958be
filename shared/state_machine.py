from enum import Enum
from typing import Optional, Callable, List
from dataclasses import dataclass

from .errors import InvalidState, ValidationError


class Round(str, Enum):
    GROUP = "group"
    ROUND_OF_32 = "round_of_32"
    ROUND_OF_16 = "round_of_16"
    QUARTER_FINAL = "quarter_final"
    SEMI_FINAL = "semi_final"
    THIRD_PLACE = "third_place"
    FINAL = "final"

    @property
    def order(self) -> int:
        return ROUND_SEQUENCE.index(self)

    @property
    def is_knockout(self) -> bool:
        return self is not Round.GROUP

    # Ordering follows the round sequence, not the string value.
    def __lt__(self, other):
        if not isinstance(other, Round):
            return NotImplemented
        return self.order < other.order

    def __le__(self, other):
        if not isinstance(other, Round):
            return NotImplemented
        return self.order <= other.order

    def __gt__(self, other):
        if not isinstance(other, Round):
            return NotImplemented
        return self.order > other.order

    def __ge__(self, other):
        if not isinstance(other, Round):
            return NotImplemented
        return self.order >= other.order


ROUND_SEQUENCE = list(Round)


class TournamentStatus(str, Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    COMPLETED = "completed"


class MatchStatus(str, Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    COMPLETED = "completed"


class TeamStatus(str, Enum):
    ACTIVE = "active"
    ELIMINATED = "eliminated"
    WINNER = "winner"


class TransitionError(InvalidState):
    code = "invalid_transition"

    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(reason or f"Cannot transition from {from_state} to {to_state}")


@dataclass
class Transition:
    from_state: Enum
    to_state: Enum
    action: str
    guard: Optional[Callable] = None


class StateMachine:
    """
    Forward-only state machine over a str Enum.

    Subclasses declare STATES (the enum), INITIAL and TRANSITIONS.
    """
    STATES = None
    INITIAL = None
    TRANSITIONS: List[Transition] = []

    def __init__(self, initial_state=None):
        self._state = initial_state if initial_state is not None else self.INITIAL

    @property
    def state(self):
        return self._state

    def transition(self, action: str, guard_context: dict = None):
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                if t.guard and guard_context:
                    if not t.guard(guard_context):
                        raise TransitionError(
                            self._state.value,
                            t.to_state.value,
                            f"Guard condition failed for action '{action}'"
                        )

                self._state = t.to_state
                return self._state

        raise TransitionError(
            self._state.value,
            "unknown",
            f"No valid transition for action '{action}' from state '{self._state.value}'"
        )

    @classmethod
    def from_state_string(cls, state_str: str) -> "StateMachine":
        return cls(initial_state=cls.STATES(state_str))


def scores_complete_guard(context: dict) -> bool:
    return context.get("team_a_score") is not None and context.get("team_b_score") is not None


class MatchStateMachine(StateMachine):
    STATES = MatchStatus
    INITIAL = MatchStatus.UPCOMING
    TRANSITIONS = [
        Transition(MatchStatus.UPCOMING, MatchStatus.ONGOING, "start"),
        Transition(MatchStatus.UPCOMING, MatchStatus.COMPLETED, "complete", scores_complete_guard),
        Transition(MatchStatus.ONGOING, MatchStatus.COMPLETED, "complete", scores_complete_guard),
    ]


class TeamStateMachine(StateMachine):
    STATES = TeamStatus
    INITIAL = TeamStatus.ACTIVE
    TRANSITIONS = [
        Transition(TeamStatus.ACTIVE, TeamStatus.ELIMINATED, "eliminate"),
        Transition(TeamStatus.ACTIVE, TeamStatus.WINNER, "crown"),
    ]


class TournamentStateMachine(StateMachine):
    STATES = TournamentStatus
    INITIAL = TournamentStatus.UPCOMING
    TRANSITIONS = [
        Transition(TournamentStatus.UPCOMING, TournamentStatus.ONGOING, "start"),
        Transition(TournamentStatus.ONGOING, TournamentStatus.COMPLETED, "complete"),
    ]


def advance_round(current: Round, target: Round) -> Round:
    """Validate a stage change; stages only ever move forward."""
    if target <= current:
        raise TransitionError(
            current.value,
            target.value,
            f"Stage can only advance forward (current: {current.value})"
        )
    return target


def parse_round(value: str) -> Round:
    try:
        return Round(value)
    except ValueError:
        raise ValidationError(f"Unknown round '{value}'")
