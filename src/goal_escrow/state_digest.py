"""Canonical ledger state digest (v1)."""
from __future__ import annotations

from blake3 import blake3

from .types import LedgerState


def _u64_be(value: int) -> bytes:
    if value < 0:
        raise ValueError("u64 must be non-negative")
    return int(value).to_bytes(8, "big", signed=False)


def _u256_be(value: int) -> bytes:
    if value < 0:
        raise ValueError("u256 must be non-negative")
    return int(value).to_bytes(32, "big", signed=False)


def compute_state_digest(state: LedgerState) -> str:
    """Compute state digest v1.

    Fields are encoded in canonical order (header, goals by id, accounts by
    address) and hashed with BLAKE3-256. The event log is not part of the
    digest; it is derived data.
    """
    buf = bytearray()
    buf += _u64_be(state.timestamp)
    buf += _u256_be(state.custody)
    buf += _u64_be(len(state.goals))

    for goal in state.goals:
        buf += _u64_be(goal.id)
        buf += goal.creator
        buf += goal.referee
        buf += goal.success_recipient
        buf += goal.failure_recipient
        buf += _u256_be(goal.escrow_amount)
        buf += goal.description_hash
        buf += _u64_be(goal.created_at)
        buf += _u64_be(goal.expiry)
        buf += bytes([int(goal.status)])

    for addr in sorted(state.accounts):
        acct = state.accounts[addr]
        buf += addr
        buf += _u256_be(acct.balance)
        buf += _u64_be(acct.flags)

    return blake3(buf).hexdigest()
