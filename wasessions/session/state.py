"""Lifecycle states of a single messaging session."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone


class SessionState(enum.Enum):
    """Per-session state machine."""

    INITIALIZING = "INITIALIZING"
    CONNECTING = "CONNECTING"
    AWAITING_QR = "AWAITING_QR"
    OPEN = "OPEN"
    CLOSING_RETRY = "CLOSING_RETRY"
    CLOSING_TERMINAL = "CLOSING_TERMINAL"
    DELETED = "DELETED"

    @property
    def is_closing(self) -> bool:
        return self in {SessionState.CLOSING_RETRY, SessionState.CLOSING_TERMINAL, SessionState.DELETED}


_ALLOWED: dict[SessionState, frozenset[SessionState]] = {
    SessionState.INITIALIZING: frozenset({SessionState.CONNECTING, SessionState.DELETED}),
    SessionState.CONNECTING: frozenset(
        {
            SessionState.AWAITING_QR,
            SessionState.OPEN,
            SessionState.CLOSING_RETRY,
            SessionState.CLOSING_TERMINAL,
            SessionState.DELETED,
        }
    ),
    SessionState.AWAITING_QR: frozenset(
        {
            SessionState.AWAITING_QR,
            SessionState.CONNECTING,
            SessionState.OPEN,
            SessionState.CLOSING_RETRY,
            SessionState.CLOSING_TERMINAL,
            SessionState.DELETED,
        }
    ),
    SessionState.OPEN: frozenset(
        {SessionState.CLOSING_RETRY, SessionState.CLOSING_TERMINAL, SessionState.DELETED}
    ),
    SessionState.CLOSING_RETRY: frozenset({SessionState.CLOSING_TERMINAL, SessionState.DELETED}),
    SessionState.CLOSING_TERMINAL: frozenset({SessionState.DELETED}),
    SessionState.DELETED: frozenset(),
}


@dataclass
class SessionTracker:
    """Current state plus the time of the last transition."""

    state: SessionState = SessionState.INITIALIZING
    last_transition_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def transition(self, next_state: SessionState) -> None:
        """Move the session into a new state, validating allowed transitions."""

        if not self.can_transition(next_state):
            raise ValueError(f"Invalid transition {self.state.value} → {next_state.value}")
        self.state = next_state
        self.last_transition_at = datetime.now(tz=timezone.utc)

    def can_transition(self, next_state: SessionState) -> bool:
        return next_state in _ALLOWED.get(self.state, frozenset())
