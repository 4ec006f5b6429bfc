"""Domain data models."""

from .loan import Loan, LoanSnapshot, LoanStatus
from .outcome import Outcome, OutcomeKind
from .transaction import (
    InclusionState,
    InclusionStatus,
    PendingTransaction,
    TransactionHandle,
    TransactionKind,
    TransactionStatus,
)

__all__ = [
    "Loan",
    "LoanSnapshot",
    "LoanStatus",
    "Outcome",
    "OutcomeKind",
    "InclusionState",
    "InclusionStatus",
    "PendingTransaction",
    "TransactionHandle",
    "TransactionKind",
    "TransactionStatus",
]
