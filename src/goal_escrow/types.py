"""Core types for the goal escrow ledger.

The ledger tracks a single entity, the Goal, plus the host-side balances
needed to model deposits and payouts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import List, Optional, Union


class GoalStatus(IntEnum):
    # Ordinals match the GoalFactory contract enum.
    PENDING = 0
    MET = 1
    WITHDRAWN_SUCCESS = 4
    WITHDRAWN_FAILURE = 5

    @property
    def is_terminal(self) -> bool:
        return self in (GoalStatus.WITHDRAWN_SUCCESS, GoalStatus.WITHDRAWN_FAILURE)

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    GoalStatus.PENDING: "Pending",
    GoalStatus.MET: "Met",
    GoalStatus.WITHDRAWN_SUCCESS: "Withdrawn (Success)",
    GoalStatus.WITHDRAWN_FAILURE: "Withdrawn (Failure/Expired)",
}


class CallType(Enum):
    CREATE_GOAL = "create_goal"
    ATTEST_SUCCESS = "attest_success"
    CLAIM_ON_FAILURE = "claim_on_failure"


@dataclass
class Goal:
    id: int
    creator: bytes
    referee: bytes
    success_recipient: bytes
    failure_recipient: bytes
    escrow_amount: int
    description_hash: bytes
    created_at: int
    expiry: int
    status: GoalStatus = GoalStatus.PENDING


@dataclass
class AccountState:
    address: bytes
    balance: int = 0
    flags: int = 0


# --- Call payloads ---


@dataclass
class CreateGoalPayload:
    referee: bytes
    success_recipient: bytes
    failure_recipient: bytes
    escrow_amount: int
    description_hash: bytes
    expiry: int


@dataclass
class GoalRef:
    goal_id: int


@dataclass
class Call:
    caller: bytes
    call_type: CallType
    payload: Union[CreateGoalPayload, GoalRef]
    value: int = 0


# --- Events ---


@dataclass(frozen=True)
class GoalCreated:
    goal_id: int
    creator: bytes
    referee: bytes
    success_recipient: bytes
    failure_recipient: bytes
    escrow_amount: int
    description_hash: bytes
    created_at: int
    expiry: int
    status: GoalStatus = GoalStatus.PENDING


@dataclass(frozen=True)
class GoalStatusChanged:
    goal_id: int
    new_status: GoalStatus
    timestamp: int


@dataclass(frozen=True)
class FundsWithdrawn:
    goal_id: int
    recipient: bytes
    amount: int
    final_status: GoalStatus
    timestamp: int


Event = Union[GoalCreated, GoalStatusChanged, FundsWithdrawn]


# --- LedgerState ---


@dataclass
class LedgerState:
    goals: List[Goal] = field(default_factory=list)
    accounts: dict[bytes, AccountState] = field(default_factory=dict)
    # Total value held on behalf of unresolved goals.
    custody: int = 0
    timestamp: int = 0
    events: List[Event] = field(default_factory=list)

    def goal_count(self) -> int:
        return len(self.goals)

    def find_goal(self, goal_id: int) -> Optional[Goal]:
        if 0 <= goal_id < len(self.goals):
            return self.goals[goal_id]
        return None
