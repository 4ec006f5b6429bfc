"""
Tagged operation outcomes returned across the orchestrator boundary.

Every LoanOrchestrator operation resolves to an Outcome instead of raising.
An Outcome is either OK (carrying a value) or tagged with the failure kind
that tells the caller what happened and whether retrying makes sense.

Usage:
    outcome = await orchestrator.request_loan(1000, 5, 30)
    if outcome.is_ok():
        render(outcome.unwrap())
    elif outcome.kind is OutcomeKind.AMBIGUOUS:
        warn("Transaction may still land, refresh before retrying")
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from .transaction import TransactionStatus

T = TypeVar("T")


class OutcomeKind(Enum):
    """Outcome tags. Everything except OK is a failure of some sort."""

    OK = "OK"

    # Local checks, no ledger round-trip
    INVALID_INPUT = "INVALID_INPUT"
    OPERATION_IN_PROGRESS = "OPERATION_IN_PROGRESS"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_REPAID = "ALREADY_REPAID"

    # Identity / signing layer (user-retryable)
    NO_SIGNER_AVAILABLE = "NO_SIGNER_AVAILABLE"
    USER_REJECTED = "USER_REJECTED"
    SIGNER_DENIED = "SIGNER_DENIED"

    # Broadcast-time failures (fatal for the attempt)
    SUBMISSION_REJECTED = "SUBMISSION_REJECTED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"

    # Confirmation-time results
    REJECTED = "REJECTED"  # Included with a failure outcome (reverted)
    AMBIGUOUS = "AMBIGUOUS"  # Timed out, may still land
    CANCELLED = "CANCELLED"  # Tracking discarded by disconnect

    # Infrastructure
    LEDGER_UNAVAILABLE = "LEDGER_UNAVAILABLE"

    @property
    def user_retryable(self) -> bool:
        """True when the user may simply try the same call again."""
        return self in _USER_RETRYABLE


_USER_RETRYABLE = frozenset({
    OutcomeKind.NO_SIGNER_AVAILABLE,
    OutcomeKind.USER_REJECTED,
    OutcomeKind.SIGNER_DENIED,
    OutcomeKind.OPERATION_IN_PROGRESS,
    OutcomeKind.LEDGER_UNAVAILABLE,
})


@dataclass(frozen=True, slots=True)
class Outcome(Generic[T]):
    """
    Result of one orchestrator operation.

    Attributes:
        kind: Outcome tag.
        value: Payload for OK outcomes (Snapshot, identity, balance).
        message: Human-readable detail for failures.
        tx_hash: Hash of the transaction involved, if one was broadcast.
        tx_status: Terminal tracker status, if a transaction was tracked.
    """

    kind: OutcomeKind
    value: Optional[T] = None
    message: str = ""
    tx_hash: Optional[str] = None
    tx_status: Optional[TransactionStatus] = None

    @classmethod
    def ok(
        cls,
        value: Any = None,
        tx_hash: Optional[str] = None,
        tx_status: Optional[TransactionStatus] = None,
    ) -> "Outcome[Any]":
        return cls(OutcomeKind.OK, value=value, tx_hash=tx_hash, tx_status=tx_status)

    @classmethod
    def fail(
        cls,
        kind: OutcomeKind,
        message: str,
        tx_hash: Optional[str] = None,
        tx_status: Optional[TransactionStatus] = None,
    ) -> "Outcome[Any]":
        if kind is OutcomeKind.OK:
            raise ValueError("Outcome.fail() requires a failure kind")
        return cls(kind, message=message, tx_hash=tx_hash, tx_status=tx_status)

    def is_ok(self) -> bool:
        return self.kind is OutcomeKind.OK

    def is_err(self) -> bool:
        return self.kind is not OutcomeKind.OK

    def unwrap(self) -> T:
        """Get the value. Raises ValueError on failure outcomes."""
        if self.kind is not OutcomeKind.OK:
            raise ValueError(f"Called unwrap() on {self.kind.value}: {self.message}")
        return self.value  # type: ignore[return-value]

    def unwrap_or(self, default: T) -> T:
        return self.value if self.is_ok() else default  # type: ignore[return-value]

    @property
    def confirmed(self) -> bool:
        """True when a tracked transaction reached CONFIRMED, whatever happened after."""
        return self.tx_status is TransactionStatus.CONFIRMED
