"""State transition entrypoints for the goal escrow ledger."""

from __future__ import annotations

from dataclasses import replace
from typing import Optional

from . import goal as goal_calls
from .errors import ErrorCode, EscrowError
from .types import Call, Event, LedgerState


class TransitionResult:
    """Thin wrapper for verify/apply results."""

    def __init__(
        self,
        ok: bool,
        error: Optional[EscrowError] = None,
        events: Optional[list[Event]] = None,
    ):
        self.ok = ok
        self.error = error
        self.events = events or []

    @classmethod
    def success(cls, events: Optional[list[Event]] = None) -> "TransitionResult":
        return cls(True, None, events)

    @classmethod
    def failure(cls, error: EscrowError) -> "TransitionResult":
        return cls(False, error)


def _verify_common(state: LedgerState, call: Call) -> None:
    if not isinstance(call.caller, bytes) or not call.caller:
        raise EscrowError(ErrorCode.INVALID_ADDRESS, "caller must be a non-empty address")
    if isinstance(call.value, bool) or not isinstance(call.value, int) or call.value < 0:
        raise EscrowError(ErrorCode.INVALID_FORMAT, "value must be a non-negative integer")


def verify_call(state: LedgerState, call: Call) -> TransitionResult:
    """Check every precondition of ``call`` without touching state."""
    try:
        _verify_common(state, call)
        goal_calls.verify(state, call)
        return TransitionResult.success()
    except EscrowError as exc:
        return TransitionResult.failure(exc)


def apply_call(state: LedgerState, call: Call) -> tuple[LedgerState, TransitionResult]:
    """Apply call to state after verification.

    Failed-call semantics:
    - Pre-validation failure: state unchanged, no events
    - Execution failure (e.g. rejected payout): state unchanged, no events
    """
    try:
        _verify_common(state, call)
        goal_calls.verify(state, call)
    except EscrowError as exc:
        return state, TransitionResult.failure(exc)

    try:
        working, events = goal_calls.apply(state, call)
    except EscrowError as exc:
        return state, TransitionResult.failure(exc)

    return working, TransitionResult.success(events)


def apply_batch(state: LedgerState, calls: list[Call]) -> tuple[LedgerState, TransitionResult]:
    """Apply calls in order with all-or-nothing semantics.

    If any call fails the whole batch is rejected and the state is unchanged.
    """
    working = state
    events: list[Event] = []
    for call in calls:
        working, result = apply_call(working, call)
        if not result.ok:
            return state, result
        events.extend(result.events)
    return working, TransitionResult.success(events)


def advance_time(state: LedgerState, timestamp: int) -> LedgerState:
    """Return a copy of ``state`` with its clock moved to ``timestamp``."""
    if timestamp < state.timestamp:
        raise EscrowError(
            ErrorCode.TIMESTAMP_REGRESSION,
            f"timestamp {timestamp} is before current {state.timestamp}",
        )
    if timestamp == state.timestamp:
        return state
    return replace(state, timestamp=timestamp)
