"""
Live session state machine.

Rules:
- The transition table below is the complete set of legal moves.
- CLOSED is terminal.
- Any non-terminal state may move to FAILED; FAILED always ends in CLOSED.
- IDLE/OPENING -> CLOSING exist so a stop during partial initialisation
  still runs the full teardown.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping

from biosyn.errors import InvalidTransition
from biosyn.observability.logger import log_event


class SessionState(str, Enum):
    """Lifecycle states of one live dictation session."""

    IDLE = "IDLE"
    OPENING = "OPENING"
    STREAMING = "STREAMING"
    SUSPENDED = "SUSPENDED"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"
    FAILED = "FAILED"


S = SessionState

TRANSITIONS: Mapping[SessionState, frozenset[SessionState]] = {
    S.IDLE: frozenset({S.OPENING, S.CLOSING, S.FAILED}),
    S.OPENING: frozenset({S.STREAMING, S.CLOSING, S.FAILED}),
    S.STREAMING: frozenset({S.SUSPENDED, S.CLOSING, S.FAILED}),
    S.SUSPENDED: frozenset({S.STREAMING, S.CLOSING, S.FAILED}),
    S.CLOSING: frozenset({S.CLOSED, S.FAILED}),
    S.FAILED: frozenset({S.CLOSED}),
    S.CLOSED: frozenset(),
}

TERMINATING: frozenset[SessionState] = frozenset({S.CLOSING, S.CLOSED, S.FAILED})


class SessionStateMachine:
    """Current state plus validated transitions, each one logged."""

    def __init__(self, *, session_id: str) -> None:
        self._session_id = session_id
        self._state = SessionState.IDLE

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def terminating(self) -> bool:
        return self._state in TERMINATING

    def can_transition(self, to: SessionState) -> bool:
        return to in TRANSITIONS[self._state]

    def transition(self, to: SessionState, *, reason: str) -> None:
        """
        Move to `to`.

        Raises:
            InvalidTransition if the move is not in the table.
        """
        if not self.can_transition(to):
            raise InvalidTransition(f"{self._state.value} -> {to.value} ({reason})")

        prev = self._state
        self._state = to
        log_event({
            "event_type": "SESSION_STATE_CHANGED",
            "session_id": self._session_id,
            "from": prev.value,
            "to": to.value,
            "reason": reason,
        })
