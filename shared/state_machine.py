from enum import Enum
from typing import Optional, Callable, List
from dataclasses import dataclass


class TournamentState(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TransitionError(Exception):
    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from {from_state} to {to_state}"
        super().__init__(self.reason)


@dataclass
class Transition:
    from_state: TournamentState
    to_state: TournamentState
    action: str
    guard: Optional[Callable] = None
    guard_reason: Optional[str] = None


def min_players_guard(context: dict) -> bool:
    participants = context.get("participants", [])
    return len(participants) >= context.get("min_players", 2)


def all_matches_complete_guard(context: dict) -> bool:
    matches = context.get("matches", [])
    return all(m.get("status") == "completed" for m in matches)


class TournamentStateMachine:
    """
    Swiss tournament lifecycle: open -> in_progress -> completed.

    'advance' keeps the tournament in progress and opens the next round;
    'complete' closes the final round. Completed is terminal.
    """
    TRANSITIONS = [
        Transition(TournamentState.OPEN, TournamentState.IN_PROGRESS, "start",
                   min_players_guard, "Not enough players"),
        Transition(TournamentState.IN_PROGRESS, TournamentState.IN_PROGRESS, "advance",
                   all_matches_complete_guard, "Not all matches are completed"),
        Transition(TournamentState.IN_PROGRESS, TournamentState.COMPLETED, "complete",
                   all_matches_complete_guard, "Not all matches are completed"),
    ]

    ALLOWED_ACTIONS = {
        TournamentState.OPEN: ["join", "select_deck", "assign_deck", "start"],
        TournamentState.IN_PROGRESS: ["report_result", "advance", "complete"],
        TournamentState.COMPLETED: [],
    }

    # Reported when an action is attempted from the wrong state
    NOT_ALLOWED_REASONS = {
        "start": "Tournament is not open",
        "advance": "Tournament is not in progress",
        "complete": "Tournament is not in progress",
    }

    def __init__(self, initial_state: TournamentState = TournamentState.OPEN):
        self._state = initial_state
        self._history: List[tuple] = []

    @property
    def state(self) -> TournamentState:
        return self._state

    @property
    def allowed_actions(self) -> List[str]:
        return self.ALLOWED_ACTIONS.get(self._state, [])

    @property
    def is_terminal(self) -> bool:
        return self._state == TournamentState.COMPLETED

    def can_transition(self, action: str) -> bool:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                return True
        return False

    def can_perform(self, action: str) -> bool:
        return action in self.allowed_actions

    def transition(self, action: str, guard_context: dict = None) -> TournamentState:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                if t.guard and guard_context is not None:
                    if not t.guard(guard_context):
                        raise TransitionError(
                            self._state.value,
                            t.to_state.value,
                            t.guard_reason or f"Guard condition failed for action '{action}'"
                        )

                old_state = self._state
                self._state = t.to_state
                self._history.append((old_state, action, self._state))
                return self._state

        raise TransitionError(
            self._state.value,
            "unknown",
            self.NOT_ALLOWED_REASONS.get(
                action,
                f"No valid transition for action '{action}' from state '{self._state.value}'"
            )
        )

    def get_history(self) -> List[tuple]:
        return self._history.copy()

    @classmethod
    def from_state_string(cls, state_str: str) -> "TournamentStateMachine":
        try:
            state = TournamentState(state_str)
        except ValueError:
            raise TransitionError(state_str, "unknown", f"Unknown tournament state '{state_str}'")
        return cls(initial_state=state)
