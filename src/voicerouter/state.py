"""Streaming session lifecycle.

Every provider session walks the same graph; only the wire codec differs.
CLOSED and ERRORED have no outgoing edges.
"""

from __future__ import annotations

from typing import Dict, FrozenSet

from loguru import logger

from voicerouter.errors import InvalidTransitionError
from voicerouter.types import SessionState

TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.CONNECTING: frozenset(
        {SessionState.OPEN, SessionState.CLOSING, SessionState.ERRORED}
    ),
    SessionState.OPEN: frozenset(
        {
            SessionState.CONFIGURING,
            SessionState.STREAMING,
            SessionState.CLOSING,
            SessionState.ERRORED,
        }
    ),
    SessionState.CONFIGURING: frozenset(
        {SessionState.STREAMING, SessionState.CLOSING, SessionState.ERRORED}
    ),
    SessionState.STREAMING: frozenset(
        {SessionState.CONFIGURING, SessionState.CLOSING, SessionState.ERRORED}
    ),
    SessionState.CLOSING: frozenset({SessionState.CLOSED, SessionState.ERRORED}),
    SessionState.CLOSED: frozenset(),
    SessionState.ERRORED: frozenset(),
}


class SessionStateMachine:
    def __init__(self, name: str = "session"):
        self._name = name
        self._state = SessionState.CONNECTING
        self.history = [SessionState.CONNECTING]

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state.is_terminal

    def can(self, target: SessionState) -> bool:
        return target in TRANSITIONS[self._state]

    def transition(self, target: SessionState) -> None:
        if not self.can(target):
            raise InvalidTransitionError(
                f"Illegal transition {self._state.value} -> {target.value}",
                details={"from": self._state.value, "to": target.value},
            )
        logger.trace(f"[VoiceRouter.Session] {self._name}: {self._state.value} -> {target.value}")
        self._state = target
        self.history.append(target)
