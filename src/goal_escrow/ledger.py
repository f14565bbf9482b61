"""Stateful host for the goal escrow state machine.

``EscrowLedger`` owns one ``LedgerState`` and publishes each committed
transition by swapping a single reference. Mutations are serialized by a
lock; reads work on whatever state was last published and never see a goal
mid-transition.
"""

from __future__ import annotations

import logging
import threading
from copy import deepcopy
from typing import Callable, Iterable, Optional

from . import goal as goal_calls
from .errors import ErrorCode, EscrowError
from .state_digest import compute_state_digest
from .state_transition import advance_time, apply_call
from .types import (
    AccountState,
    Call,
    CallType,
    CreateGoalPayload,
    Event,
    FundsWithdrawn,
    Goal,
    GoalRef,
    LedgerState,
)

logger = logging.getLogger(__name__)

Observer = Callable[[Event], None]
TransferHook = Callable[[bytes, int], None]
Clock = Callable[[], int]


class EscrowLedger:
    """Keyed collection of goals plus the calls that create and resolve them."""

    def __init__(
        self,
        state: Optional[LedgerState] = None,
        clock: Optional[Clock] = None,
        transfer: Optional[TransferHook] = None,
    ):
        """
        Initialize the ledger.

        Args:
            state: Starting state (defaults to an empty ledger)
            clock: Host time source, consulted before every call
            transfer: External payout hook called as ``transfer(recipient, amount)``
                right before a release is committed; raising aborts the call
        """
        self._state = state if state is not None else LedgerState()
        self._clock = clock
        self._transfer = transfer
        self._observers: list[Observer] = []
        self._lock = threading.Lock()

    # --- observers ---

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        self._observers.remove(observer)

    # --- host context ---

    @property
    def now(self) -> int:
        return self._state.timestamp

    def advance_time(self, timestamp: int) -> None:
        with self._lock:
            self._state = advance_time(self._state, timestamp)

    def fund(self, address: bytes, amount: int, flags: int = 0) -> None:
        """Credit ``address`` with ``amount`` outside of any goal."""
        if amount < 0:
            raise EscrowError(ErrorCode.INVALID_FORMAT, "funding amount must be >= 0")
        with self._lock:
            ns = deepcopy(self._state)
            acct = ns.accounts.setdefault(address, AccountState(address=address))
            acct.balance += amount
            acct.flags |= flags
            self._state = ns

    def balance_of(self, address: bytes) -> int:
        acct = self._state.accounts.get(address)
        return acct.balance if acct is not None else 0

    # --- calls ---

    def execute(self, call: Call) -> list[Event]:
        """Run one call atomically and return the events it emitted."""
        with self._lock:
            state = self._state
            if self._clock is not None:
                state = advance_time(state, max(state.timestamp, self._clock()))

            new_state, result = apply_call(state, call)
            if not result.ok:
                logger.debug(f"Rejected {call.call_type.value}: {result.error}")
                raise result.error

            if self._transfer is not None:
                self._pay_out(result.events)

            self._state = new_state

        logger.info(f"Committed {call.call_type.value} ({len(result.events)} events)")
        self._notify(result.events)
        return result.events

    def _pay_out(self, events: Iterable[Event]) -> None:
        for event in events:
            if not isinstance(event, FundsWithdrawn):
                continue
            try:
                self._transfer(event.recipient, event.amount)
            except EscrowError:
                raise
            except Exception as exc:
                logger.warning(
                    f"Payout to {event.recipient.hex()} for goal {event.goal_id} failed: {exc}"
                )
                raise EscrowError(ErrorCode.TRANSFER_REJECTED, str(exc)) from exc

    def _notify(self, events: Iterable[Event]) -> None:
        for event in events:
            for observer in list(self._observers):
                try:
                    observer(event)
                except Exception:
                    logger.exception(f"Observer {observer!r} failed on {type(event).__name__}")

    def create_goal(
        self,
        caller: bytes,
        referee: bytes,
        success_recipient: bytes,
        failure_recipient: bytes,
        escrow_amount: int,
        description_hash: bytes,
        expiry: int,
        deposited_value: int,
    ) -> int:
        """Create a goal funded by ``deposited_value`` and return its id."""
        payload = CreateGoalPayload(
            referee=referee,
            success_recipient=success_recipient,
            failure_recipient=failure_recipient,
            escrow_amount=escrow_amount,
            description_hash=description_hash,
            expiry=expiry,
        )
        events = self.execute(
            Call(caller=caller, call_type=CallType.CREATE_GOAL, payload=payload, value=deposited_value)
        )
        return events[0].goal_id

    def attest_success(self, caller: bytes, goal_id: int) -> list[Event]:
        return self.execute(
            Call(caller=caller, call_type=CallType.ATTEST_SUCCESS, payload=GoalRef(goal_id))
        )

    def claim_on_failure(self, caller: bytes, goal_id: int) -> list[Event]:
        return self.execute(
            Call(caller=caller, call_type=CallType.CLAIM_ON_FAILURE, payload=GoalRef(goal_id))
        )

    # --- reads ---

    def get_goal(self, goal_id: int) -> Goal:
        return goal_calls.get_goal(self._state, goal_id)

    def get_creator(self, goal_id: int) -> bytes:
        return goal_calls.get_creator(self._state, goal_id)

    def get_referee(self, goal_id: int) -> bytes:
        return goal_calls.get_referee(self._state, goal_id)

    def goal_count(self) -> int:
        return self._state.goal_count()

    def custody(self) -> int:
        return self._state.custody

    def events(self) -> list[Event]:
        return list(self._state.events)

    def snapshot(self) -> LedgerState:
        """Return a detached copy of the current state."""
        return deepcopy(self._state)

    def digest(self) -> str:
        return compute_state_digest(self._state)

    def reset(self, state: Optional[LedgerState] = None) -> None:
        with self._lock:
            self._state = state if state is not None else LedgerState()
