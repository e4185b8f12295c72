"""Finite state machine driving a promotion run."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

BUILDING = "building"
LOCAL_VERIFY = "local_verify"
DONE = "done"
ABORTED = "aborted"
TERMINAL_STATES = frozenset({DONE, ABORTED})


def gate_state(environment: str) -> str:
    return f"gate:{environment}"


def promoting_state(environment: str) -> str:
    return f"promoting:{environment}"


@dataclass(frozen=True, slots=True)
class _Transition:
    trigger: str
    source: str
    dest: str


class SimpleStateMachine:
    """
    Minimal FSM with named triggers.
    Not thread-safe; raises on unknown states and invalid triggers.
    """

    def __init__(self) -> None:
        self._states: list[str] = []
        self._transitions: list[_Transition] = []
        self._state: str | None = None
        self.history: list[str] = []

    def add_state(self, name: str) -> None:
        if name not in self._states:
            self._states.append(name)

    def add_transition(self, trigger: str, source: str, dest: str) -> None:
        for name in (source, dest):
            if name not in self._states:
                raise ValueError(f"Unknown state: {name}")
        self._transitions.append(_Transition(trigger=trigger, source=source, dest=dest))

    def set_state(self, name: str) -> None:
        if name not in self._states:
            raise ValueError(f"Unknown state: {name}")
        self._state = name
        self.history.append(name)

    def can(self, trigger: str) -> bool:
        return any(t.trigger == trigger and t.source == self._state for t in self._transitions)

    def trigger(self, trigger: str) -> str:
        if self._state is None:
            raise RuntimeError("State machine not initialized; call set_state() first")
        for t in self._transitions:
            if t.trigger == trigger and t.source == self._state:
                self._state = t.dest
                self.history.append(t.dest)
                return t.dest
        raise RuntimeError(f"No transition for trigger '{trigger}' from state '{self._state}'")

    @property
    def state(self) -> str:
        if self._state is None:
            raise RuntimeError("State machine not initialized; call set_state() first")
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


def promotion_machine(environments: Iterable[str]) -> SimpleStateMachine:
    """Forward-only machine: build, local verify, then gate/promote per environment.

    Every non-terminal state can ``finish`` (done) or ``abort``; there are no
    backward transitions.
    """
    names = list(environments)
    machine = SimpleStateMachine()
    for state in (BUILDING, LOCAL_VERIFY, DONE, ABORTED):
        machine.add_state(state)
    for name in names:
        machine.add_state(gate_state(name))
        machine.add_state(promoting_state(name))

    machine.add_transition("verify_local", BUILDING, LOCAL_VERIFY)
    previous = [BUILDING, LOCAL_VERIFY]
    for name in names:
        for source in previous:
            machine.add_transition(f"open_gate:{name}", source, gate_state(name))
        machine.add_transition(f"promote:{name}", gate_state(name), promoting_state(name))
        previous = [promoting_state(name)]

    for state in [BUILDING, LOCAL_VERIFY] + [
        s for name in names for s in (gate_state(name), promoting_state(name))
    ]:
        machine.add_transition("finish", state, DONE)
        machine.add_transition("abort", state, ABORTED)
    machine.set_state(BUILDING)
    return machine
