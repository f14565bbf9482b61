"""Genesis state and demo scenarios for a fresh ledger.

The scenarios cover every resting state a dashboard has to render: active
goals, a goal paid out on success, an expired-but-unclaimed goal, a goal paid
out on failure and goals where one identity holds several roles.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from blake3 import blake3

from .config import (
    COIN_VALUE,
    DEFAULT_ESCROW_AMOUNT,
    GENESIS_TIMESTAMP,
    SECONDS_PER_DAY,
    SECONDS_PER_MINUTE,
    TEST_ACCOUNT_BALANCE,
)
from .ledger import EscrowLedger
from .test_accounts import ACCOUNTS, ALICE, BOB, CAROL, DAVE, EVE, FRANK, GRACE, HEIDI
from .types import AccountState, LedgerState

logger = logging.getLogger(__name__)

CREATOR_1, CREATOR_2 = ALICE, BOB
REFEREE_1, REFEREE_2 = CAROL, DAVE
SUCCESS_RECIPIENT_1, SUCCESS_RECIPIENT_2 = EVE, FRANK
FAILURE_RECIPIENT_1, FAILURE_RECIPIENT_2 = GRACE, HEIDI


@dataclass
class SeededGoal:
    scenario: str
    goal_id: int
    description: str


def description_hash(description: str) -> bytes:
    """Digest of the off-chain goal terms stored with a goal."""
    return blake3(description.encode("utf-8")).digest()


def genesis_state(timestamp: int = GENESIS_TIMESTAMP) -> LedgerState:
    """Empty ledger with every test account funded."""
    state = LedgerState(timestamp=timestamp)
    for addr in ACCOUNTS.values():
        state.accounts[addr] = AccountState(address=addr, balance=TEST_ACCOUNT_BALANCE)
    return state


def _days(n: float) -> int:
    return int(n * SECONDS_PER_DAY)


def seed_ledger(ledger: EscrowLedger) -> list[SeededGoal]:
    """Create the demo goals (scenarios A-F) on ``ledger``."""
    seeded: list[SeededGoal] = []

    def create(scenario: str, creator: bytes, referee: bytes, success: bytes,
               failure: bytes, amount: int, description: str, expires_in: int) -> int:
        goal_id = ledger.create_goal(
            caller=creator,
            referee=referee,
            success_recipient=success,
            failure_recipient=failure,
            escrow_amount=amount,
            description_hash=description_hash(description),
            expiry=ledger.now + expires_in,
            deposited_value=amount,
        )
        seeded.append(SeededGoal(scenario, goal_id, description))
        logger.info(f"[Scenario {scenario}] Goal {goal_id} \"{description}\" created")
        return goal_id

    # A: simple active goal.
    create("A", CREATOR_1, REFEREE_1, SUCCESS_RECIPIENT_1, FAILURE_RECIPIENT_1,
           DEFAULT_ESCROW_AMOUNT, "Read 5 books in 30 days", _days(30))

    # B: met and paid out to the success recipient.
    goal_b = create("B", CREATOR_2, REFEREE_2, SUCCESS_RECIPIENT_2, FAILURE_RECIPIENT_2,
                    COIN_VALUE // 10, "Exercise 3 times a week for 2 months", _days(45))
    ledger.attest_success(REFEREE_2, goal_b)
    logger.info(f"[Scenario B] Goal {goal_b} marked as met, funds withdrawn")

    # C and D expire after a minute.
    create("C", CREATOR_1, REFEREE_1, SUCCESS_RECIPIENT_1, FAILURE_RECIPIENT_1,
           COIN_VALUE * 2 // 100, "Write 10 blog posts in 7 days", SECONDS_PER_MINUTE)
    goal_d = create("D", CREATOR_2, REFEREE_2, SUCCESS_RECIPIENT_2, FAILURE_RECIPIENT_2,
                    COIN_VALUE * 3 // 100, "Learn a new language in 30 days", SECONDS_PER_MINUTE)

    # E: the creator is a referee elsewhere and the success recipient here.
    create("E", REFEREE_1, REFEREE_2, REFEREE_1, FAILURE_RECIPIENT_1,
           COIN_VALUE * 4 // 100, "Build a small dApp in 60 days", _days(60))

    # F: the creator is both recipients.
    create("F", CREATOR_1, REFEREE_2, CREATOR_1, CREATOR_1,
           COIN_VALUE // 100, "Daily meditation for 30 days", _days(30))

    # Let C and D lapse, then claim D; C stays claimable.
    ledger.advance_time(ledger.now + SECONDS_PER_MINUTE + 1)
    ledger.claim_on_failure(FAILURE_RECIPIENT_2, goal_d)
    logger.info(f"[Scenario D] Goal {goal_d} funds withdrawn by failure recipient")

    logger.info(f"Seeding finished, total goals: {ledger.goal_count()}")
    return seeded
