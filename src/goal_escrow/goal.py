"""Goal escrow call specs (create / attest / claim) and read helpers."""

from __future__ import annotations

from copy import deepcopy

from .config import (
    ACCOUNT_FLAG_REJECTS_TRANSFERS,
    ADDRESS_SIZE,
    DESCRIPTION_HASH_SIZE,
    NULL_ADDRESS,
)
from .errors import ErrorCode, EscrowError
from .types import (
    AccountState,
    Call,
    CallType,
    CreateGoalPayload,
    Event,
    FundsWithdrawn,
    Goal,
    GoalCreated,
    GoalRef,
    GoalStatus,
    GoalStatusChanged,
    LedgerState,
)


def _valid_address(v: object) -> bool:
    return isinstance(v, bytes) and len(v) == ADDRESS_SIZE and v != NULL_ADDRESS


def _is_int(v: object) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def verify(state: LedgerState, call: Call) -> None:
    ct = call.call_type
    if ct == CallType.CREATE_GOAL:
        _verify_create(state, call)
    elif ct == CallType.ATTEST_SUCCESS:
        _verify_attest(state, call)
    elif ct == CallType.CLAIM_ON_FAILURE:
        _verify_claim(state, call)
    else:
        raise EscrowError(ErrorCode.INVALID_PAYLOAD, f"unsupported call type: {ct}")


def apply(state: LedgerState, call: Call) -> tuple[LedgerState, list[Event]]:
    ct = call.call_type
    if ct == CallType.CREATE_GOAL:
        return _apply_create(state, call)
    elif ct == CallType.ATTEST_SUCCESS:
        return _apply_attest(state, call)
    elif ct == CallType.CLAIM_ON_FAILURE:
        return _apply_claim(state, call)
    raise EscrowError(ErrorCode.INVALID_PAYLOAD, f"unsupported call type: {ct}")


# --- reads ---


def get_goal(state: LedgerState, goal_id: int) -> Goal:
    """Return a detached copy of goal ``goal_id``."""
    return deepcopy(_require_goal(state, goal_id))


def get_creator(state: LedgerState, goal_id: int) -> bytes:
    return _require_goal(state, goal_id).creator


def get_referee(state: LedgerState, goal_id: int) -> bytes:
    return _require_goal(state, goal_id).referee


def _require_goal(state: LedgerState, goal_id: object) -> Goal:
    if not _is_int(goal_id):
        raise EscrowError(ErrorCode.INVALID_PAYLOAD, "goal id must be an integer")
    goal = state.find_goal(goal_id)
    if goal is None:
        raise EscrowError(ErrorCode.GOAL_NOT_FOUND, f"goal {goal_id} not found")
    return goal


def _goal_ref(call: Call) -> GoalRef:
    if not isinstance(call.payload, GoalRef):
        raise EscrowError(ErrorCode.INVALID_PAYLOAD, "payload must be GoalRef")
    return call.payload


def _release(state: LedgerState, recipient: bytes, amount: int) -> None:
    """Move ``amount`` out of custody into ``recipient``.

    Operates on a working copy; a rejected transfer raises before the caller
    commits, so the goal stays untouched.
    """
    acct = state.accounts.get(recipient)
    if acct is None:
        acct = AccountState(address=recipient)
        state.accounts[recipient] = acct
    if acct.flags & ACCOUNT_FLAG_REJECTS_TRANSFERS:
        raise EscrowError(ErrorCode.TRANSFER_REJECTED, "recipient rejected transfer")
    if state.custody < amount:
        raise EscrowError(ErrorCode.INTERNAL_ERROR, "custody underflow")
    state.custody -= amount
    acct.balance += amount


# --- CREATE_GOAL ---


def _verify_create(state: LedgerState, call: Call) -> None:
    p = call.payload
    if not isinstance(p, CreateGoalPayload):
        raise EscrowError(ErrorCode.INVALID_PAYLOAD, "payload must be CreateGoalPayload")
    if not _is_int(p.escrow_amount) or not _is_int(p.expiry) or not _is_int(call.value):
        raise EscrowError(ErrorCode.INVALID_FORMAT, "amount, expiry and value must be integers")

    if call.value != p.escrow_amount:
        raise EscrowError(ErrorCode.INCORRECT_ESCROW_AMOUNT, "Incorrect escrow amount")

    if p.expiry <= state.timestamp:
        raise EscrowError(ErrorCode.EXPIRY_NOT_IN_FUTURE, "Expiry date must be in the future")

    for addr in (p.referee, p.success_recipient, p.failure_recipient):
        if not _valid_address(addr):
            raise EscrowError(ErrorCode.INVALID_ADDRESS, "Invalid address provided")

    if p.escrow_amount <= 0:
        raise EscrowError(
            ErrorCode.ZERO_ESCROW_AMOUNT, "Escrow amount must be greater than zero"
        )

    if not isinstance(p.description_hash, bytes) or len(p.description_hash) != DESCRIPTION_HASH_SIZE:
        raise EscrowError(ErrorCode.INVALID_FORMAT, "description hash must be 32 bytes")

    creator = state.accounts.get(call.caller)
    if creator is None:
        raise EscrowError(ErrorCode.ACCOUNT_NOT_FOUND, "creator not found")
    if creator.balance < call.value:
        raise EscrowError(ErrorCode.INSUFFICIENT_BALANCE, "insufficient balance for deposit")


def _apply_create(state: LedgerState, call: Call) -> tuple[LedgerState, list[Event]]:
    ns = deepcopy(state)
    p = call.payload
    now = ns.timestamp

    creator = ns.accounts[call.caller]
    creator.balance -= call.value
    ns.custody += call.value

    goal = Goal(
        id=len(ns.goals),
        creator=call.caller,
        referee=p.referee,
        success_recipient=p.success_recipient,
        failure_recipient=p.failure_recipient,
        escrow_amount=p.escrow_amount,
        description_hash=p.description_hash,
        created_at=now,
        expiry=p.expiry,
        status=GoalStatus.PENDING,
    )
    ns.goals.append(goal)

    events: list[Event] = [
        GoalCreated(
            goal_id=goal.id,
            creator=goal.creator,
            referee=goal.referee,
            success_recipient=goal.success_recipient,
            failure_recipient=goal.failure_recipient,
            escrow_amount=goal.escrow_amount,
            description_hash=goal.description_hash,
            created_at=goal.created_at,
            expiry=goal.expiry,
            status=goal.status,
        )
    ]
    ns.events.extend(events)
    return ns, events


# --- ATTEST_SUCCESS ---


def _verify_attest(state: LedgerState, call: Call) -> None:
    goal = _require_goal(state, _goal_ref(call).goal_id)
    if call.value != 0:
        raise EscrowError(ErrorCode.NON_PAYABLE, "attest_success does not accept value")
    if call.caller != goal.referee:
        raise EscrowError(ErrorCode.NOT_REFEREE, "Only referee can call this function")
    if goal.status != GoalStatus.PENDING:
        raise EscrowError(ErrorCode.NOT_PENDING, "Goal status is not Pending")


def _apply_attest(state: LedgerState, call: Call) -> tuple[LedgerState, list[Event]]:
    ns = deepcopy(state)
    goal = ns.goals[_goal_ref(call).goal_id]
    now = ns.timestamp

    # Met is only an audit step; it never rests in committed state.
    goal.status = GoalStatus.MET
    events: list[Event] = [GoalStatusChanged(goal.id, GoalStatus.MET, now)]

    _release(ns, goal.success_recipient, goal.escrow_amount)
    goal.status = GoalStatus.WITHDRAWN_SUCCESS
    events.append(
        FundsWithdrawn(
            goal.id, goal.success_recipient, goal.escrow_amount, goal.status, now
        )
    )
    ns.events.extend(events)
    return ns, events


# --- CLAIM_ON_FAILURE ---


def _verify_claim(state: LedgerState, call: Call) -> None:
    goal = _require_goal(state, _goal_ref(call).goal_id)
    if call.value != 0:
        raise EscrowError(ErrorCode.NON_PAYABLE, "claim_on_failure does not accept value")
    if goal.status.is_terminal:
        raise EscrowError(ErrorCode.ALREADY_RESOLVED, "Funds already withdrawn")
    if state.timestamp <= goal.expiry:
        raise EscrowError(ErrorCode.NOT_YET_EXPIRED, "Expiry date is not yet passed")
    if call.caller != goal.failure_recipient:
        raise EscrowError(
            ErrorCode.NOT_FAILURE_RECIPIENT, "Only failure recipient can call this function"
        )
    if goal.status != GoalStatus.PENDING:
        raise EscrowError(ErrorCode.INVALID_STATE, "Funds cannot be withdrawn at this time")


def _apply_claim(state: LedgerState, call: Call) -> tuple[LedgerState, list[Event]]:
    ns = deepcopy(state)
    goal = ns.goals[_goal_ref(call).goal_id]
    now = ns.timestamp

    _release(ns, goal.failure_recipient, goal.escrow_amount)
    goal.status = GoalStatus.WITHDRAWN_FAILURE
    events: list[Event] = [
        GoalStatusChanged(goal.id, goal.status, now),
        FundsWithdrawn(goal.id, goal.failure_recipient, goal.escrow_amount, goal.status, now),
    ]
    ns.events.extend(events)
    return ns, events
