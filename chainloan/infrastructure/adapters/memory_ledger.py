"""
In-memory loan ledger for simulation and tests.

Mimics the CryptoLoan contract behind the LedgerClient protocol:
- requestLoan appends an active loan for the sender once included
- repayLoan marks a loan repaid once included (reverts if already repaid)
- transactions become visible after a configurable number of status polls

Failure injection hooks let tests reproduce dropped, reverted, delayed and
out-of-band-confirmed transactions, signer rejection and read outages.
"""

from __future__ import annotations

import asyncio
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ...domain.exceptions import (
    Ambiguous,
    InsufficientFunds,
    LedgerUnavailable,
    NoSignerAvailable,
    NotFound,
    SignerDenied,
    SubmissionRejected,
    UserRejected,
)
from ...domain.interfaces.signer import CallData, Signer
from ...models.loan import Loan
from ...models.transaction import (
    PENDING,
    InclusionState,
    InclusionStatus,
    TransactionHandle,
    TransactionKind,
    TransactionStatus,
)
from ...utils.logging_setup import get_logger


logger = get_logger(__name__)

LOAN_CONTRACT_ADDRESS = "0x000000000000000000000000000000000000c0de"


@dataclass
class _LoanRecord:
    amount: int
    collateral_amount: int
    duration: int
    active: bool = True
    repaid: bool = False


@dataclass
class _MemoryTransaction:
    handle: TransactionHandle
    sender: str
    kind: TransactionKind
    payload: Dict[str, Any]
    polls: int = 0
    include_after_polls: Optional[int] = 1  # None = never included
    force_revert: bool = False
    status: InclusionStatus = field(default_factory=lambda: PENDING)


class InMemoryLedger:
    """
    Simulated loan ledger.

    Example:
        ledger = InMemoryLedger(include_after_polls=3)
        signer = MemorySigner(ledger, accounts=["0xabc"])
        handle = await ledger.submit(TransactionKind.REQUEST_LOAN, {...}, signer, "0xabc")
    """

    def __init__(
        self,
        include_after_polls: Optional[int] = 1,
        block_number: int = 1,
        latency_sec: float = 0.0,
    ):
        """
        Initialize simulated ledger.

        Args:
            include_after_polls: Status poll on which new transactions become
                included (1 = first poll). None = never included.
            block_number: Starting block height.
            latency_sec: Artificial delay per call, to surface interleavings.
        """
        self.include_after_polls = include_after_polls
        self.block_number = block_number
        self.latency_sec = latency_sec

        self._loans: Dict[str, List[_LoanRecord]] = {}
        self._balances: Dict[str, int] = {}
        self._transactions: Dict[str, _MemoryTransaction] = {}

        # Failure injection
        self.fail_reads = False
        self.fail_reads_remaining = 0
        self.fail_loan_indices: Set[int] = set()
        self.fail_status_reads = False
        self.revert_next = False
        self.reject_submissions: Optional[str] = None
        self.insufficient_funds = False

        # Call accounting
        self.submissions: List[_MemoryTransaction] = []
        self.status_reads = 0
        self.read_calls = 0

    # -------------------------------------------------------------------------
    # Setup helpers
    # -------------------------------------------------------------------------

    def set_balance(self, identity: str, amount: int) -> None:
        self._balances[identity.lower()] = amount

    def seed_loan(
        self,
        identity: str,
        amount: int,
        collateral_amount: int,
        duration: int,
        active: bool = True,
        repaid: bool = False,
    ) -> int:
        """Append a loan directly (as if confirmed long ago). Returns its index."""
        records = self._loans.setdefault(identity.lower(), [])
        records.append(_LoanRecord(amount, collateral_amount, duration, active, repaid))
        return len(records) - 1

    def include(self, handle: TransactionHandle, revert: bool = False) -> None:
        """Include a transaction now, regardless of its poll schedule (out-of-band)."""
        tx = self._transactions[handle.tx_hash]
        if not tx.status.included:
            self._apply(tx, revert=revert)

    @property
    def total_calls(self) -> int:
        return self.read_calls + len(self.submissions) + self.status_reads

    # -------------------------------------------------------------------------
    # LedgerClient: reads
    # -------------------------------------------------------------------------

    async def get_loan_count(self, identity: str) -> int:
        await self._before_read()
        return len(self._loans.get(identity.lower(), []))

    async def get_loan(self, identity: str, index: int) -> Loan:
        await self._before_read()
        if index in self.fail_loan_indices:
            raise LedgerUnavailable(f"Simulated read failure for loan {index}")
        records = self._loans.get(identity.lower(), [])
        if not 0 <= index < len(records):
            raise NotFound(f"No loan {index} for {identity} (count={len(records)})")
        record = records[index]
        return Loan(
            index=index,
            principal_amount=record.amount,
            collateral_amount=record.collateral_amount,
            duration_days=record.duration,
            active=record.active,
            repaid=record.repaid,
        )

    async def get_balance(self, identity: str) -> int:
        await self._before_read()
        return self._balances.get(identity.lower(), 0)

    # -------------------------------------------------------------------------
    # LedgerClient: writes
    # -------------------------------------------------------------------------

    async def submit(
        self,
        kind: TransactionKind,
        payload: Dict[str, Any],
        signer: Signer,
        identity: str,
    ) -> TransactionHandle:
        await self._delay()
        call = self.encode_call(kind, payload, identity)

        if self.reject_submissions:
            raise SubmissionRejected(self.reject_submissions)
        if self.insufficient_funds:
            raise InsufficientFunds(f"Insufficient funds for gas * price + value on {identity}")
        self._precheck(kind, payload, identity)

        return await signer.sign_and_broadcast(call)

    def encode_call(self, kind: TransactionKind, payload: Dict[str, Any], identity: str) -> CallData:
        """Encode as CallData. `data` carries the function name, not real ABI bytes."""
        if kind is TransactionKind.REQUEST_LOAN:
            missing = {"principal", "collateral", "duration_days"} - set(payload)
            data = "requestLoan"
        elif kind is TransactionKind.REPAY_LOAN:
            missing = {"index"} - set(payload)
            data = "repayLoan"
        else:
            raise SubmissionRejected(f"Unsupported transaction kind {kind}")
        if missing:
            raise SubmissionRejected(f"Malformed {kind.value} payload, missing {sorted(missing)}")
        return CallData(
            sender=identity,
            to=LOAN_CONTRACT_ADDRESS,
            data=data,
            fields={"kind": kind, "payload": dict(payload)},
        )

    def broadcast(self, call: CallData) -> TransactionHandle:
        """Accept a signed call into the pending pool."""
        handle = TransactionHandle("0x" + secrets.token_hex(32))
        tx = _MemoryTransaction(
            handle=handle,
            sender=call.sender,
            kind=call.fields["kind"],
            payload=call.fields["payload"],
            include_after_polls=self.include_after_polls,
            force_revert=self.revert_next,
        )
        self.revert_next = False
        self._transactions[handle.tx_hash] = tx
        self.submissions.append(tx)
        logger.debug(f"Memory ledger accepted {tx.kind.value} {handle}")
        return handle

    async def get_transaction_status(self, handle: TransactionHandle) -> InclusionStatus:
        await self._delay()
        self.status_reads += 1
        if self.fail_status_reads:
            raise LedgerUnavailable("Simulated status read failure")

        tx = self._transactions.get(handle.tx_hash)
        if tx is None:
            return PENDING
        if tx.status.included:
            return tx.status

        tx.polls += 1
        if tx.include_after_polls is not None and tx.polls >= tx.include_after_polls:
            self._apply(tx, revert=tx.force_revert)
        return tx.status

    async def close(self) -> None:
        return None

    # -------------------------------------------------------------------------
    # Contract semantics
    # -------------------------------------------------------------------------

    def _precheck(self, kind: TransactionKind, payload: Dict[str, Any], identity: str) -> None:
        """Reverts detectable at gas-estimation time."""
        if kind is TransactionKind.REQUEST_LOAN:
            if payload["duration_days"] <= 0:
                raise SubmissionRejected("execution reverted: invalid duration")
        elif kind is TransactionKind.REPAY_LOAN:
            records = self._loans.get(identity.lower(), [])
            index = payload["index"]
            if not 0 <= index < len(records):
                raise SubmissionRejected(f"execution reverted: no loan {index}")

    def _apply(self, tx: _MemoryTransaction, revert: bool) -> None:
        self.block_number += 1
        if not revert and tx.kind is TransactionKind.REPAY_LOAN:
            records = self._loans.get(tx.sender.lower(), [])
            index = tx.payload["index"]
            revert = (
                not 0 <= index < len(records)
                or not records[index].active
                or records[index].repaid
            )

        if revert:
            tx.status = InclusionStatus(InclusionState.REVERTED, self.block_number)
            return

        if tx.kind is TransactionKind.REQUEST_LOAN:
            self.seed_loan(
                tx.sender,
                amount=tx.payload["principal"],
                collateral_amount=tx.payload["collateral"],
                duration=tx.payload["duration_days"],
            )
        else:
            self._loans[tx.sender.lower()][tx.payload["index"]].repaid = True
        tx.status = InclusionStatus(InclusionState.SUCCESS, self.block_number)

    async def _before_read(self) -> None:
        await self._delay()
        self.read_calls += 1
        if self.fail_reads:
            raise LedgerUnavailable("Simulated ledger outage")
        if self.fail_reads_remaining > 0:
            self.fail_reads_remaining -= 1
            raise LedgerUnavailable("Simulated transient ledger outage")

    async def _delay(self) -> None:
        await asyncio.sleep(self.latency_sec)


class MemorySigner:
    """
    Signer for InMemoryLedger.

    Args:
        ledger: Ledger to broadcast into.
        accounts: Accounts the user will authorize.
        reject_connect: Simulate the user declining the connection.
        deny_signing: Simulate the user declining to sign.
        available: False simulates a wallet that cannot be reached.
        lose_response: Broadcast the next transaction, then fail as if the
            connection dropped before the hash came back (one-shot).
    """

    def __init__(
        self,
        ledger: InMemoryLedger,
        accounts: Optional[List[str]] = None,
        reject_connect: bool = False,
        deny_signing: bool = False,
        available: bool = True,
        lose_response: bool = False,
    ):
        self._ledger = ledger
        self.accounts = list(accounts or [])
        self.authorized = False
        self.reject_connect = reject_connect
        self.deny_signing = deny_signing
        self.available = available
        self.lose_response = lose_response
        self.request_calls = 0
        self.signed: List[CallData] = []

    async def request_accounts(self) -> List[str]:
        self.request_calls += 1
        if not self.available:
            raise NoSignerAvailable("Wallet unreachable")
        if self.reject_connect:
            raise UserRejected("User rejected the request")
        self.authorized = True
        return list(self.accounts)

    async def list_accounts(self) -> List[str]:
        if not self.available:
            return []
        return list(self.accounts) if self.authorized else []

    async def sign_and_broadcast(self, call: CallData) -> TransactionHandle:
        if self.deny_signing:
            raise SignerDenied("User denied transaction signature")
        self.signed.append(call)
        handle = self._ledger.broadcast(call)
        if self.lose_response:
            self.lose_response = False
            raise Ambiguous(
                "Connection dropped after broadcast",
                tx_hash=handle.tx_hash,
                tx_status=TransactionStatus.SUBMITTED,
            )
        return handle

    async def close(self) -> None:
        return None
