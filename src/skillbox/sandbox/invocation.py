"""Invocation lifecycle for sandboxed skills.

An Invocation tracks one call of a skill from PENDING to DISPOSED. It is
never persisted; the audit log receives a summary after disposal.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class InvocationState(str, Enum):
    PENDING = "pending"
    LOADED = "loaded"
    INSTANTIATED = "instantiated"
    EXECUTING = "executing"
    COMPLETED = "completed"
    CAPABILITY_DENIED = "capability_denied"
    FUEL_EXHAUSTED = "fuel_exhausted"
    TIMED_OUT = "timed_out"
    TRAPPED = "trapped"
    HOST_ERROR = "host_error"
    LOAD_FAILED = "load_failed"
    DISPOSED = "disposed"


OUTCOME_STATES = frozenset(
    {
        InvocationState.COMPLETED,
        InvocationState.CAPABILITY_DENIED,
        InvocationState.FUEL_EXHAUSTED,
        InvocationState.TIMED_OUT,
        InvocationState.TRAPPED,
        InvocationState.HOST_ERROR,
        InvocationState.LOAD_FAILED,
    }
)

_EXECUTION_OUTCOMES = OUTCOME_STATES - {InvocationState.LOAD_FAILED}

TRANSITIONS: dict[InvocationState, frozenset[InvocationState]] = {
    InvocationState.PENDING: frozenset(
        {InvocationState.LOADED, InvocationState.LOAD_FAILED, InvocationState.TIMED_OUT}
    ),
    # A module's start function runs during instantiation and can end it early
    InvocationState.LOADED: frozenset({InvocationState.INSTANTIATED})
    | (_EXECUTION_OUTCOMES - {InvocationState.COMPLETED}),
    InvocationState.INSTANTIATED: frozenset({InvocationState.EXECUTING, InvocationState.TIMED_OUT}),
    InvocationState.EXECUTING: _EXECUTION_OUTCOMES,
    **{state: frozenset({InvocationState.DISPOSED}) for state in OUTCOME_STATES},
    InvocationState.DISPOSED: frozenset(),
}


@dataclass
class Invocation:
    """State and result of one sandboxed skill call.

    Attributes:
        skill_name: Skill being invoked
        skill_version: Version being invoked
        input: Input payload handed to the guest
        state: Current lifecycle state
        outcome: Terminal outcome, set once execution ends
        output: Guest output (only kept when the outcome is COMPLETED)
        detail: Human-readable explanation for non-COMPLETED outcomes
        fuel_consumed: Fuel units consumed by the guest
        elapsed_ms: Wall-clock time from start to outcome
        logs: Lines the guest wrote through the log host function
    """

    skill_name: str
    skill_version: str
    input: bytes
    state: InvocationState = InvocationState.PENDING
    outcome: InvocationState | None = None
    output: bytes | None = None
    detail: str | None = None
    fuel_consumed: int = 0
    elapsed_ms: float = 0.0
    logs: list[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic, repr=False)

    def transition(self, new_state: InvocationState) -> None:
        """Move to a new state.

        Raises:
            RuntimeError: If the transition is not in the lifecycle table
        """
        if new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal invocation transition {self.state.value} -> {new_state.value} "
                f"for {self.skill_name}@{self.skill_version}"
            )
        self.state = new_state
        if new_state in OUTCOME_STATES:
            self.outcome = new_state
            self.elapsed_ms = (time.monotonic() - self.started_at) * 1000

    def finish(self, outcome: InvocationState, detail: str | None = None) -> None:
        """Record a terminal outcome, once. Later calls are ignored."""
        if self.outcome is not None:
            return
        self.transition(outcome)
        if detail is not None:
            self.detail = detail
        if outcome is not InvocationState.COMPLETED:
            self.output = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is InvocationState.COMPLETED

    def summary(self) -> dict[str, Any]:
        """Audit-friendly view. The input payload is never included."""
        return {
            "skill": self.skill_name,
            "version": self.skill_version,
            "outcome": self.outcome.value if self.outcome else None,
            "fuel_consumed": self.fuel_consumed,
            "elapsed_ms": round(self.elapsed_ms, 3),
            "output_bytes": len(self.output) if self.output is not None else 0,
            "detail": self.detail,
        }
