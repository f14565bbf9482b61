"""Goal escrow error codes and exceptions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ErrorCategory(IntEnum):
    SUCCESS = 0x00
    VALIDATION = 0x01
    AUTHORIZATION = 0x02
    RESOURCE = 0x03
    STATE = 0x04
    LOOKUP = 0x05
    INTERNAL = 0xFF


class ErrorCode(IntEnum):
    # Success
    SUCCESS = 0x0000

    # Validation
    INVALID_FORMAT = 0x0100
    INCORRECT_ESCROW_AMOUNT = 0x0101
    EXPIRY_NOT_IN_FUTURE = 0x0102
    INVALID_ADDRESS = 0x0103
    ZERO_ESCROW_AMOUNT = 0x0104
    INVALID_PAYLOAD = 0x0105
    NON_PAYABLE = 0x0106

    # Authorization
    NOT_REFEREE = 0x0201
    NOT_FAILURE_RECIPIENT = 0x0202

    # Resource
    INSUFFICIENT_BALANCE = 0x0300
    ACCOUNT_NOT_FOUND = 0x0301
    TRANSFER_REJECTED = 0x0302

    # State
    NOT_PENDING = 0x0401
    ALREADY_RESOLVED = 0x0402
    NOT_YET_EXPIRED = 0x0403
    INVALID_STATE = 0x0404
    TIMESTAMP_REGRESSION = 0x0405

    # Lookup
    GOAL_NOT_FOUND = 0x0500

    # Internal
    INTERNAL_ERROR = 0xFF00
    UNKNOWN = 0xFFFF


@dataclass(frozen=True)
class EscrowError(Exception):
    code: ErrorCode
    message: str

    @property
    def category(self) -> ErrorCategory:
        return ErrorCategory(self.code >> 8)

    def __str__(self) -> str:
        return f"{self.code.name}({self.code:#06x}): {self.message}"


# Allow Python's Exception machinery to set __traceback__/__context__/__cause__
# while keeping dataclass fields frozen (Python 3.13 contextlib compat).
_EXCEPTION_ATTRS = frozenset(
    ("__traceback__", "__context__", "__cause__", "__suppress_context__", "__notes__")
)
_frozen_setattr = EscrowError.__setattr__


def _escrow_error_setattr(self: EscrowError, name: str, value: object) -> None:
    if name in _EXCEPTION_ATTRS:
        object.__setattr__(self, name, value)
    else:
        _frozen_setattr(self, name, value)


EscrowError.__setattr__ = _escrow_error_setattr  # type: ignore[method-assign]


def err(code: ErrorCode, message: str) -> EscrowError:
    return EscrowError(code=code, message=message)
