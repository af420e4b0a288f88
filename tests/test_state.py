import pytest

from voicerouter.errors import InvalidTransitionError
from voicerouter.state import TRANSITIONS, SessionStateMachine
from voicerouter.types import SessionState


def test_starts_connecting() -> None:
    sm = SessionStateMachine("s")
    assert sm.state is SessionState.CONNECTING
    assert sm.history == [SessionState.CONNECTING]


def test_happy_path() -> None:
    sm = SessionStateMachine("s")
    for target in (
        SessionState.OPEN,
        SessionState.STREAMING,
        SessionState.CONFIGURING,
        SessionState.STREAMING,
        SessionState.CLOSING,
        SessionState.CLOSED,
    ):
        sm.transition(target)
    assert sm.is_terminal
    assert sm.history[-1] is SessionState.CLOSED


@pytest.mark.parametrize("terminal", [SessionState.CLOSED, SessionState.ERRORED])
def test_terminal_states_have_no_exits(terminal) -> None:
    assert TRANSITIONS[terminal] == frozenset()


def test_errored_reachable_from_every_non_terminal_state() -> None:
    for state, targets in TRANSITIONS.items():
        if not state.is_terminal:
            assert SessionState.ERRORED in targets, state


@pytest.mark.parametrize(
    "path",
    [
        [SessionState.STREAMING],
        [SessionState.OPEN, SessionState.CLOSED],
        [SessionState.OPEN, SessionState.CLOSING, SessionState.CLOSED, SessionState.OPEN],
        [SessionState.ERRORED, SessionState.CLOSING],
    ],
)
def test_illegal_transitions_raise(path) -> None:
    sm = SessionStateMachine("s")
    with pytest.raises(InvalidTransitionError) as exc:
        for target in path:
            sm.transition(target)
    assert exc.value.details["to"] == path[-1].value
    assert sm.state is not path[-1]
