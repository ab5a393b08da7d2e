"""Transaction and withdrawal state machines with transition validation."""

from __future__ import annotations

from enum import Enum


class TransactionStatus(str, Enum):
    """Payment transaction status values."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class WithdrawalStatus(str, Enum):
    """Withdrawal status values."""

    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class TransactionStateMachine:
    """State machine for payment transactions.

    Allowed transitions:
    - pending → processing
    - pending → completed | failed
    - processing → completed | failed

    completed and failed are terminal.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        TransactionStatus.PENDING: [
            TransactionStatus.PROCESSING,
            TransactionStatus.COMPLETED,
            TransactionStatus.FAILED,
        ],
        TransactionStatus.PROCESSING: [TransactionStatus.COMPLETED, TransactionStatus.FAILED],
        TransactionStatus.COMPLETED: [],
        TransactionStatus.FAILED: [],
    }

    OPEN = {TransactionStatus.PENDING, TransactionStatus.PROCESSING}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return not cls.VALID_TRANSITIONS.get(status, [])

    @classmethod
    def is_open(cls, status: str) -> bool:
        return status in cls.OPEN


class WithdrawalStateMachine:
    """State machine for withdrawals.

    Pending → Completed | Failed. A Failed withdrawal is refunded.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        WithdrawalStatus.PENDING: [WithdrawalStatus.COMPLETED, WithdrawalStatus.FAILED],
        WithdrawalStatus.COMPLETED: [],
        WithdrawalStatus.FAILED: [],
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return not cls.VALID_TRANSITIONS.get(status, [])
