"""Helpers to serialize/deserialize ledger state, goals, calls and events."""

from __future__ import annotations

import fcntl
import json
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

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


def _hex_to_bytes(v: str) -> bytes:
    return bytes.fromhex(v[2:] if v.startswith(("0x", "0X")) else v)


def _bytes_to_hex(v: bytes) -> str:
    return v.hex()


# --- goals ---


def goal_to_json(goal: Goal) -> dict[str, Any]:
    return {
        "id": goal.id,
        "creator": _bytes_to_hex(goal.creator),
        "referee": _bytes_to_hex(goal.referee),
        "success_recipient": _bytes_to_hex(goal.success_recipient),
        "failure_recipient": _bytes_to_hex(goal.failure_recipient),
        # Amounts can exceed 2**53; keep them as decimal strings.
        "escrow_amount": str(goal.escrow_amount),
        "description_hash": _bytes_to_hex(goal.description_hash),
        "created_at": goal.created_at,
        "expiry": goal.expiry,
        "status": int(goal.status),
    }


def goal_from_json(data: dict[str, Any]) -> Goal:
    return Goal(
        id=int(data["id"]),
        creator=_hex_to_bytes(data["creator"]),
        referee=_hex_to_bytes(data["referee"]),
        success_recipient=_hex_to_bytes(data["success_recipient"]),
        failure_recipient=_hex_to_bytes(data["failure_recipient"]),
        escrow_amount=int(data["escrow_amount"]),
        description_hash=_hex_to_bytes(data["description_hash"]),
        created_at=int(data["created_at"]),
        expiry=int(data["expiry"]),
        status=GoalStatus(int(data["status"])),
    )


# --- events ---


def event_to_json(event: Event) -> dict[str, Any]:
    if isinstance(event, GoalCreated):
        return {
            "event": "GoalCreated",
            "goal_id": event.goal_id,
            "creator": _bytes_to_hex(event.creator),
            "referee": _bytes_to_hex(event.referee),
            "success_recipient": _bytes_to_hex(event.success_recipient),
            "failure_recipient": _bytes_to_hex(event.failure_recipient),
            "escrow_amount": str(event.escrow_amount),
            "description_hash": _bytes_to_hex(event.description_hash),
            "created_at": event.created_at,
            "expiry": event.expiry,
            "status": int(event.status),
        }
    if isinstance(event, GoalStatusChanged):
        return {
            "event": "GoalStatusChanged",
            "goal_id": event.goal_id,
            "new_status": int(event.new_status),
            "timestamp": event.timestamp,
        }
    if isinstance(event, FundsWithdrawn):
        return {
            "event": "FundsWithdrawn",
            "goal_id": event.goal_id,
            "recipient": _bytes_to_hex(event.recipient),
            "amount": str(event.amount),
            "final_status": int(event.final_status),
            "timestamp": event.timestamp,
        }
    raise TypeError(f"unknown event type: {type(event).__name__}")


def event_from_json(data: dict[str, Any]) -> Event:
    kind = data.get("event")
    if kind == "GoalCreated":
        return GoalCreated(
            goal_id=int(data["goal_id"]),
            creator=_hex_to_bytes(data["creator"]),
            referee=_hex_to_bytes(data["referee"]),
            success_recipient=_hex_to_bytes(data["success_recipient"]),
            failure_recipient=_hex_to_bytes(data["failure_recipient"]),
            escrow_amount=int(data["escrow_amount"]),
            description_hash=_hex_to_bytes(data["description_hash"]),
            created_at=int(data["created_at"]),
            expiry=int(data["expiry"]),
            status=GoalStatus(int(data["status"])),
        )
    if kind == "GoalStatusChanged":
        return GoalStatusChanged(
            goal_id=int(data["goal_id"]),
            new_status=GoalStatus(int(data["new_status"])),
            timestamp=int(data["timestamp"]),
        )
    if kind == "FundsWithdrawn":
        return FundsWithdrawn(
            goal_id=int(data["goal_id"]),
            recipient=_hex_to_bytes(data["recipient"]),
            amount=int(data["amount"]),
            final_status=GoalStatus(int(data["final_status"])),
            timestamp=int(data["timestamp"]),
        )
    raise ValueError(f"unknown event kind: {kind!r}")


# --- state ---


def state_to_json(state: LedgerState) -> dict[str, Any]:
    return {
        "timestamp": state.timestamp,
        "custody": str(state.custody),
        "goals": [goal_to_json(g) for g in state.goals],
        "accounts": [
            {
                "address": _bytes_to_hex(a.address),
                "balance": str(a.balance),
                "flags": a.flags,
            }
            for a in state.accounts.values()
        ],
        "events": [event_to_json(e) for e in state.events],
    }


def state_from_json(data: dict[str, Any]) -> LedgerState:
    state = LedgerState(
        timestamp=int(data.get("timestamp", 0)),
        custody=int(data.get("custody", 0)),
    )
    state.goals = [goal_from_json(g) for g in data.get("goals", [])]
    for i, goal in enumerate(state.goals):
        if goal.id != i:
            raise ValueError(f"goal at index {i} has id {goal.id}")
    held = sum(g.escrow_amount for g in state.goals if not g.status.is_terminal)
    if held != state.custody:
        raise ValueError(f"custody {state.custody} does not match unresolved escrow {held}")
    for a in data.get("accounts", []):
        addr = _hex_to_bytes(a["address"])
        state.accounts[addr] = AccountState(
            address=addr,
            balance=int(a.get("balance", 0)),
            flags=int(a.get("flags", 0)),
        )
    state.events = [event_from_json(e) for e in data.get("events", [])]
    return state


def load_state(path: Path) -> LedgerState:
    return state_from_json(json.loads(Path(path).read_text()))


def save_state(path: Path, state: LedgerState) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(state_to_json(state), indent=2))
    tmp.replace(path)


@contextmanager
def state_lock(path: Path, timeout: float = 10.0, poll: float = 0.01) -> Iterator[None]:
    """Hold an exclusive lock on ``<path>.lock`` for a load-modify-save cycle.

    Raises ``TimeoutError`` if another process keeps the lock past ``timeout``.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lock_path = path.with_name(path.name + ".lock")
    fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR)
    try:
        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise TimeoutError(f"ledger state {path} is locked by another process")
                time.sleep(poll)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


# --- calls ---


def call_to_json(call: Call) -> dict[str, Any]:
    out: dict[str, Any] = {
        "caller": _bytes_to_hex(call.caller),
        "call_type": call.call_type.value,
        "value": str(call.value),
    }
    p = call.payload
    if isinstance(p, CreateGoalPayload):
        out["payload"] = {
            "referee": _bytes_to_hex(p.referee),
            "success_recipient": _bytes_to_hex(p.success_recipient),
            "failure_recipient": _bytes_to_hex(p.failure_recipient),
            "escrow_amount": str(p.escrow_amount),
            "description_hash": _bytes_to_hex(p.description_hash),
            "expiry": p.expiry,
        }
    elif isinstance(p, GoalRef):
        out["payload"] = {"goal_id": p.goal_id}
    return out


def call_from_json(data: dict[str, Any]) -> Call:
    call_type = CallType(data["call_type"])
    p = data.get("payload", {})
    if call_type == CallType.CREATE_GOAL:
        payload: Any = CreateGoalPayload(
            referee=_hex_to_bytes(p["referee"]),
            success_recipient=_hex_to_bytes(p["success_recipient"]),
            failure_recipient=_hex_to_bytes(p["failure_recipient"]),
            escrow_amount=int(p["escrow_amount"]),
            description_hash=_hex_to_bytes(p["description_hash"]),
            expiry=int(p["expiry"]),
        )
    else:
        payload = GoalRef(goal_id=int(p["goal_id"]))
    return Call(
        caller=_hex_to_bytes(data["caller"]),
        call_type=call_type,
        payload=payload,
        value=int(data.get("value", 0)),
    )
