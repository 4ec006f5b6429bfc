"""Loan and snapshot models.

A Loan mirrors one `loans(address, index)` record of the loan contract.
Amounts are integers in ledger-native smallest units (wei for collateral)
and are never converted to float.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterator, Optional, Tuple


class LoanStatus(Enum):
    """Display status derived from the contract flags."""
    PENDING = "PENDING"  # Recorded but not funded
    ACTIVE = "ACTIVE"
    REPAID = "REPAID"


@dataclass(frozen=True)
class Loan:
    """
    Immutable ledger loan record.

    `(identity, index)` is the primary key. The contract appends loans to a
    per-address array and never removes or reorders them, so the index is
    stable for the lifetime of the ledger.
    """

    index: int
    principal_amount: int
    collateral_amount: int
    duration_days: int
    active: bool
    repaid: bool

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError(f"Loan index must be >= 0, got {self.index}")
        if self.repaid and not self.active:
            raise ValueError(f"Loan {self.index} is repaid but not active")

    @property
    def status(self) -> LoanStatus:
        if not self.active:
            return LoanStatus.PENDING
        return LoanStatus.REPAID if self.repaid else LoanStatus.ACTIVE

    @property
    def repayable(self) -> bool:
        """Active and not yet repaid."""
        return self.active and not self.repaid


@dataclass(frozen=True)
class LoanSnapshot:
    """
    Reconciled view of one identity's loans.

    Immutable, so handing it to callers never exposes live state.
    `as_of_version` is the reconciler's fetch counter at the time the
    refresh started; higher versions are never replaced by lower ones.
    """

    identity: str
    loans: Tuple[Loan, ...] = ()
    as_of_version: int = 0
    fetched_at: datetime = field(default_factory=datetime.now)

    def __len__(self) -> int:
        return len(self.loans)

    def __iter__(self) -> Iterator[Loan]:
        return iter(self.loans)

    def get(self, index: int) -> Optional[Loan]:
        """Loan at `index`, or None when out of range."""
        if 0 <= index < len(self.loans):
            return self.loans[index]
        return None

    @property
    def active_loans(self) -> Tuple[Loan, ...]:
        return tuple(loan for loan in self.loans if loan.repayable)

    @property
    def outstanding_principal(self) -> int:
        return sum(loan.principal_amount for loan in self.loans if loan.repayable)
