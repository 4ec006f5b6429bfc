"""
Transaction Tracker - submit a ledger mutation and follow it to a terminal state.

State machine:

    SUBMITTED ──> AWAITING_CONFIRMATION ──┬──> CONFIRMED   (included, succeeded)
                                          ├──> FAILED      (included, reverted)
                                          └──> TIMED_OUT   (nothing observed in the wait window)

TIMED_OUT is ambiguous: the transaction may still be included later. It is
never folded into FAILED, and nothing is resubmitted automatically, since
replaying a mutation without idempotency keys can duplicate its effect.

Polling:
- First status read happens right after broadcast, then every poll interval.
- No poll is issued at or past the deadline, so at most
  ceil(max_wait / interval) polls happen per transaction.
- A poll failing with LedgerUnavailable counts as "not observed yet".
- The loop is a task per identity; cancel(identity) stops it and discards
  the PendingTransaction.
"""

from __future__ import annotations

import asyncio
import math
from typing import Any, Dict, Optional

from ...models.transaction import (
    InclusionState,
    InclusionStatus,
    PendingTransaction,
    TransactionKind,
    TransactionStatus,
)
from ...utils.logging_setup import get_logger
from ..clock import Clock, SystemClock
from ..exceptions import LedgerUnavailable, OperationInProgress, TrackingCancelled
from ..interfaces.ledger_client import LedgerClient
from ..interfaces.signer import Signer


logger = get_logger(__name__)


class TransactionTracker:
    """
    Submits transactions and tracks them until terminal.

    Holds at most one PendingTransaction per identity. Terminal transactions
    are discarded immediately; no history is kept.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        poll_interval_sec: float = 2.0,
        max_wait_sec: float = 60.0,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize tracker.

        Args:
            ledger: Ledger client used to submit and poll.
            poll_interval_sec: Delay between status polls.
            max_wait_sec: Wait window before declaring TIMED_OUT.
            clock: Time source (SystemClock by default).
        """
        if poll_interval_sec <= 0:
            raise ValueError("poll_interval_sec must be > 0")
        if max_wait_sec <= 0:
            raise ValueError("max_wait_sec must be > 0")

        self._ledger = ledger
        self.poll_interval_sec = poll_interval_sec
        self.max_wait_sec = max_wait_sec
        self._clock = clock or SystemClock()

        self._pending: Dict[str, PendingTransaction] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def max_polls(self) -> int:
        """Upper bound on status polls per transaction."""
        return max(1, math.ceil(self.max_wait_sec / self.poll_interval_sec))

    def in_flight(self, identity: str) -> Optional[PendingTransaction]:
        """The identity's PendingTransaction, if one is still being tracked."""
        return self._pending.get(identity)

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    async def submit_and_track(
        self,
        identity: str,
        kind: TransactionKind,
        payload: Dict[str, Any],
        signer: Signer,
    ) -> PendingTransaction:
        """
        Broadcast a mutation and wait for its terminal state.

        Args:
            identity: Sender identity.
            kind: Mutation kind.
            payload: Kind-specific arguments.
            signer: Signer used to authorize the broadcast.

        Returns:
            The PendingTransaction in a terminal state (CONFIRMED, FAILED,
            TIMED_OUT). Already discarded from the tracker.

        Raises:
            OperationInProgress: A transaction for `identity` is in flight.
            TrackingCancelled: cancel(identity) was called before a terminal state.
            SubmissionRejected, InsufficientFunds, SignerDenied,
            LedgerUnavailable: Broadcast failed; nothing is tracked.
            Ambiguous: The broadcast response was lost; the transaction may
                be in the pool under the carried hash.
        """
        if identity in self._pending:
            raise OperationInProgress(
                f"{self._pending[identity].kind.value} already in flight for {identity}"
            )

        pending = PendingTransaction(
            kind=kind,
            payload=dict(payload),
            identity=identity,
            submitted_at=self._clock.now(),
        )
        self._pending[identity] = pending

        try:
            handle = await self._ledger.submit(kind, payload, signer, identity)
        except BaseException:
            self._discard(identity, pending)
            raise

        pending.handle = handle
        if self._pending.get(identity) is not pending:
            # Disconnected while the broadcast was in progress
            logger.warning(f"Tracking of {handle} cancelled before polling started")
            raise TrackingCancelled(f"Tracking cancelled for {handle}", tx_hash=handle.tx_hash)

        logger.info(f"{kind.value} submitted: tx={handle} identity={identity}")
        return await self._track(pending)

    async def _track(self, pending: PendingTransaction) -> PendingTransaction:
        identity = pending.identity
        task = asyncio.create_task(
            self._poll_until_terminal(pending),
            name=f"track-{pending.tx_hash}",
        )
        self._tasks[identity] = task

        try:
            await asyncio.wait({task})
        finally:
            if not task.done():
                task.cancel()
            if self._tasks.get(identity) is task:
                del self._tasks[identity]
            self._discard(identity, pending)

        if task.cancelled():
            logger.warning(
                f"Tracking of {pending.tx_hash} cancelled after {pending.attempt} poll(s); "
                "final outcome unknown locally"
            )
            raise TrackingCancelled(f"Tracking cancelled for {pending.tx_hash}", tx_hash=pending.tx_hash)

        return task.result()

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    async def _poll_until_terminal(self, pending: PendingTransaction) -> PendingTransaction:
        deadline = self._clock.monotonic() + self.max_wait_sec
        pending.status = TransactionStatus.AWAITING_CONFIRMATION

        while True:
            pending.attempt += 1
            status = await self._observe(pending)

            if status is not None and status.included:
                pending.block_number = status.block_number
                if status.state is InclusionState.SUCCESS:
                    pending.status = TransactionStatus.CONFIRMED
                    logger.info(
                        f"Transaction {pending.tx_hash} confirmed in block {status.block_number} "
                        f"after {pending.attempt} poll(s)"
                    )
                else:
                    pending.status = TransactionStatus.FAILED
                    logger.warning(
                        f"Transaction {pending.tx_hash} reverted in block {status.block_number}"
                    )
                return pending

            remaining = deadline - self._clock.monotonic()
            if remaining <= 0:
                break
            await self._clock.sleep(min(self.poll_interval_sec, remaining))
            if self._clock.monotonic() >= deadline:
                break

        pending.status = TransactionStatus.TIMED_OUT
        logger.warning(
            f"Transaction {pending.tx_hash} not observed within {self.max_wait_sec}s "
            f"({pending.attempt} poll(s)); outcome is ambiguous"
        )
        return pending

    async def _observe(self, pending: PendingTransaction) -> Optional[InclusionStatus]:
        """One status read. None when the ledger could not be reached."""
        try:
            return await self._ledger.get_transaction_status(pending.handle)
        except LedgerUnavailable as e:
            logger.warning(
                f"Status poll {pending.attempt} for {pending.tx_hash} failed: {e}"
            )
            return None

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def cancel(self, identity: str) -> bool:
        """
        Stop tracking for `identity` and discard its PendingTransaction.

        The broadcast transaction itself is unaffected.

        Returns:
            True if something was being tracked.
        """
        pending = self._pending.pop(identity, None)
        task = self._tasks.pop(identity, None)
        if task is not None and not task.done():
            task.cancel()
        if pending is not None:
            logger.info(
                f"Discarded pending {pending.kind.value} for {identity} (tx={pending.tx_hash})"
            )
        return pending is not None

    def cancel_all(self) -> int:
        """Cancel tracking for every identity. Returns the number cancelled."""
        return sum(1 for identity in list(self._pending) if self.cancel(identity))

    def _discard(self, identity: str, pending: PendingTransaction) -> None:
        if self._pending.get(identity) is pending:
            del self._pending[identity]
