"""Ledger client protocol for loan contract reads and writes."""

from __future__ import annotations

from typing import Any, Dict, Protocol, runtime_checkable

from ...models.loan import Loan
from ...models.transaction import InclusionStatus, TransactionHandle, TransactionKind
from .signer import Signer


@runtime_checkable
class LedgerClient(Protocol):
    """
    Protocol for the loan ledger.

    Implementations:
    - Web3LedgerClient (EVM JSON-RPC)
    - InMemoryLedger (simulation, tests)

    Every transport failure surfaces as LedgerUnavailable; implementations
    never leak raw transport errors.

    Usage:
        ledger: LedgerClient = Web3LedgerClient(...)
        handle = await ledger.submit(TransactionKind.REPAY_LOAN, {"index": 0}, signer, identity)
        status = await ledger.get_transaction_status(handle)
    """

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_loan_count(self, identity: str) -> int:
        """Number of loans recorded for `identity` (>= 0)."""
        ...

    async def get_loan(self, identity: str, index: int) -> Loan:
        """
        Loan record at `index`.

        Raises:
            NotFound: If index is outside [0, count).
            LedgerUnavailable: On transport failure.
        """
        ...

    async def get_balance(self, identity: str) -> int:
        """Native-asset balance in smallest units."""
        ...

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def submit(
        self,
        kind: TransactionKind,
        payload: Dict[str, Any],
        signer: Signer,
        identity: str,
    ) -> TransactionHandle:
        """
        Build the contract call for `kind` and broadcast it through `signer`.

        Returns once the transaction is accepted into the pending pool.

        Raises:
            SubmissionRejected: Malformed payload or precondition failure.
            InsufficientFunds: Account cannot cover the transaction.
            SignerDenied: User declined to sign.
            LedgerUnavailable: On transport failure.
        """
        ...

    # -------------------------------------------------------------------------
    # Confirmation
    # -------------------------------------------------------------------------

    async def get_transaction_status(self, handle: TransactionHandle) -> InclusionStatus:
        """Single idempotent inclusion lookup for `handle`."""
        ...

    async def close(self) -> None:
        """Release transport resources."""
        ...
