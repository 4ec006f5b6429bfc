"""Transaction models for ledger mutations.

Terminology:
- TransactionHandle: the hash returned once a signed transaction is broadcast.
  Broadcast means accepted into the pending pool, nothing more.
- InclusionStatus: what the ledger currently reports for a handle.
- PendingTransaction: one tracked mutation. Lives only while it is relevant
  and is never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class TransactionKind(Enum):
    """Ledger mutation kind."""
    REQUEST_LOAN = "REQUEST_LOAN"
    REPAY_LOAN = "REPAY_LOAN"


class TransactionStatus(Enum):
    """Tracker lifecycle state."""
    SUBMITTED = "SUBMITTED"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def is_terminal(self) -> bool:
        return self in (
            TransactionStatus.CONFIRMED,
            TransactionStatus.FAILED,
            TransactionStatus.TIMED_OUT,
        )


class InclusionState(Enum):
    """Inclusion state reported by the ledger for a handle."""
    NOT_FOUND = "NOT_FOUND"  # Still pending, dropped, or not yet visible to this node
    SUCCESS = "SUCCESS"
    REVERTED = "REVERTED"


@dataclass(frozen=True)
class TransactionHandle:
    """Broadcast transaction reference."""

    tx_hash: str

    def __str__(self) -> str:
        return self.tx_hash


@dataclass(frozen=True)
class InclusionStatus:
    """Single observation of a transaction's inclusion."""

    state: InclusionState
    block_number: Optional[int] = None

    @property
    def included(self) -> bool:
        return self.state is not InclusionState.NOT_FOUND


PENDING = InclusionStatus(InclusionState.NOT_FOUND)


@dataclass
class PendingTransaction:
    """
    One in-flight mutation tracked by the TransactionTracker.

    `attempt` counts status polls issued for the handle. There is no
    resubmission, so a transaction is broadcast exactly once.
    """

    kind: TransactionKind
    payload: Dict[str, Any]
    identity: str
    handle: Optional[TransactionHandle] = None
    status: TransactionStatus = TransactionStatus.SUBMITTED
    submitted_at: datetime = field(default_factory=datetime.now)
    attempt: int = 0
    block_number: Optional[int] = None

    @property
    def tx_hash(self) -> Optional[str]:
        return self.handle.tx_hash if self.handle else None

    @property
    def is_in_flight(self) -> bool:
        return not self.status.is_terminal
