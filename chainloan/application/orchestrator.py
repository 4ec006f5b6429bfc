"""
Loan Orchestrator - request and repay loans against the ledger.

Coordinates:
- SignerSession: make sure an identity is connected
- TransactionTracker: submit the mutation and wait for a terminal state
- LoanStateReconciler: rebuild the loan snapshot after a confirmed mutation

Every public operation returns an Outcome. Domain exceptions raised by the
components are converted at this boundary; unexpected exceptions are logged
with traceback and reported as LEDGER_UNAVAILABLE.

Only one mutation (request or repay) runs at a time. The guard is taken
before the first await, so a second call issued while the first is still
suspended sees it and gets OPERATION_IN_PROGRESS.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional

from config.models import LoanLimitsConfig, ReconcileConfig

from ..domain.clock import Clock, SystemClock
from ..domain.exceptions import (
    AlreadyRepaid,
    Ambiguous,
    ChainLoanError,
    InvalidInput,
    LedgerUnavailable,
    NotFound,
    Rejected,
    TrackingCancelled,
)
from ..domain.interfaces.ledger_client import LedgerClient
from ..domain.services.loan_reconciler import LoanStateReconciler
from ..domain.services.signer_session import SignerSession
from ..domain.services.transaction_tracker import TransactionTracker
from ..models.loan import LoanSnapshot
from ..models.outcome import Outcome, OutcomeKind
from ..models.transaction import PendingTransaction, TransactionKind, TransactionStatus
from ..utils.logging_setup import get_logger
from ..utils.trace_context import new_operation


logger = get_logger(__name__)


class LoanOrchestrator:
    """
    Root of the loan workflow for one connected identity.

    Example:
        orchestrator = LoanOrchestrator(session, ledger, tracker, reconciler)
        outcome = await orchestrator.request_loan(1000, 5, 30)
        if outcome.is_ok():
            snapshot = outcome.unwrap()
    """

    def __init__(
        self,
        session: SignerSession,
        ledger: LedgerClient,
        tracker: TransactionTracker,
        reconciler: LoanStateReconciler,
        limits: Optional[LoanLimitsConfig] = None,
        reconcile: Optional[ReconcileConfig] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            session: Signer session holding the connected identity.
            ledger: Ledger client (balance reads go straight to it).
            tracker: Transaction tracker sharing the same ledger client.
            reconciler: Loan snapshot reconciler.
            limits: Local input bounds for loan requests.
            reconcile: Retry policy for snapshot refreshes.
            clock: Time source for retry backoff.
        """
        self._session = session
        self._ledger = ledger
        self._tracker = tracker
        self._reconciler = reconciler
        self._limits = limits or LoanLimitsConfig()
        self._reconcile = reconcile or ReconcileConfig()
        self._clock = clock or SystemClock()

        self._mutation_in_flight = False
        self._session.add_disconnect_listener(self._on_disconnect)

    @property
    def session(self) -> SignerSession:
        return self._session

    @property
    def mutation_in_flight(self) -> bool:
        return self._mutation_in_flight

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    async def connect(self) -> Outcome[str]:
        """Connect the signer and return the identity."""
        with new_operation("connect"):
            return await self._run("connect", self._session.connect)

    async def restore(self) -> Outcome[Optional[str]]:
        """Re-attach an already-authorized identity without prompting (value may be None)."""
        with new_operation("restore"):
            return await self._run("restore", self._session.restore)

    async def disconnect(self) -> Outcome[Optional[str]]:
        """
        Disconnect the identity.

        Cancels confirmation polling for it; a caller awaiting request/repay
        receives CANCELLED. Broadcast transactions are not recalled.
        """
        with new_operation("disconnect"):
            return await self._run("disconnect", self._session.disconnect)

    def _on_disconnect(self, identity: str) -> None:
        if self._tracker.cancel(identity):
            logger.warning(f"Disconnect of {identity} discarded an in-flight transaction")
        self._reconciler.forget(identity)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def snapshot(self) -> Optional[LoanSnapshot]:
        """Last reconciled snapshot for the connected identity, or None."""
        identity = self._session.current_identity()
        if identity is None:
            return None
        return self._reconciler.snapshot(identity)

    async def refresh_loans(self) -> Outcome[LoanSnapshot]:
        """Re-sync the snapshot from the ledger (retried on LedgerUnavailable)."""
        with new_operation("refresh_loans"):
            async def _refresh() -> LoanSnapshot:
                identity = await self._session.connect()
                return await self._refresh_with_retry(identity)

            return await self._run("refresh_loans", _refresh)

    async def get_balance(self) -> Outcome[int]:
        """Native balance of the connected identity, in wei."""
        with new_operation("get_balance"):
            async def _balance() -> int:
                identity = await self._session.connect()
                return await self._ledger.get_balance(identity)

            return await self._run("get_balance", _balance)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def request_loan(
        self,
        principal: int,
        collateral: int,
        duration_days: int,
    ) -> Outcome[LoanSnapshot]:
        """
        Request a new loan.

        Args:
            principal: Loan amount in smallest units.
            collateral: Collateral in wei.
            duration_days: Loan duration in days.

        Returns:
            OK with the refreshed snapshot; REJECTED if the transaction
            reverted; AMBIGUOUS if it was not observed in the wait window
            or the broadcast response was lost;
            the matching failure kind otherwise.
        """
        with new_operation("request_loan"):
            try:
                self._validate_request(principal, collateral, duration_days)
            except InvalidInput as e:
                logger.info(f"request_loan rejected locally: {e}")
                return Outcome.fail(e.kind, str(e))

            payload = {
                "principal": principal,
                "collateral": collateral,
                "duration_days": duration_days,
            }
            return await self._guarded_mutation(
                "request_loan",
                lambda identity: self._submit(identity, TransactionKind.REQUEST_LOAN, payload),
            )

    async def repay_loan(self, index: int) -> Outcome[LoanSnapshot]:
        """
        Repay loan `index`.

        Checks the cached snapshot first (refreshing it when missing or
        stale) so a loan already shown as repaid is never submitted again.
        """
        with new_operation("repay_loan"):
            if not _is_int(index) or index < 0:
                message = f"Loan index must be a non-negative integer, got {index!r}"
                logger.info(f"repay_loan rejected locally: {message}")
                return Outcome.fail(OutcomeKind.INVALID_INPUT, message)

            async def _repay(identity: str) -> Outcome[LoanSnapshot]:
                snapshot = self._reconciler.snapshot(identity)
                if snapshot is None or self._reconciler.is_stale(identity):
                    snapshot = await self._refresh_with_retry(identity)
                    self._require_identity(identity)

                loan = snapshot.get(index)
                if loan is None:
                    raise NotFound(f"No loan {index} for {identity} ({len(snapshot)} loan(s))")
                if loan.repaid:
                    raise AlreadyRepaid(f"Loan {index} is already repaid")

                return await self._submit(identity, TransactionKind.REPAY_LOAN, {"index": index})

            return await self._guarded_mutation("repay_loan", _repay)

    async def _guarded_mutation(
        self,
        name: str,
        body: Callable[[str], Awaitable[Outcome[LoanSnapshot]]],
    ) -> Outcome[LoanSnapshot]:
        if self._mutation_in_flight:
            logger.info(f"{name} rejected: another mutation is in flight")
            return Outcome.fail(
                OutcomeKind.OPERATION_IN_PROGRESS,
                "Another loan operation is still in progress",
            )

        self._mutation_in_flight = True
        try:
            async def _body() -> Outcome[LoanSnapshot]:
                identity = await self._session.connect()
                return await body(identity)

            return await self._run(name, _body)
        finally:
            self._mutation_in_flight = False

    async def _submit(
        self,
        identity: str,
        kind: TransactionKind,
        payload: Dict[str, Any],
    ) -> Outcome[LoanSnapshot]:
        # Nothing awaits between this check and the tracker registering the transaction
        self._require_identity(identity)
        try:
            pending = await self._tracker.submit_and_track(
                identity, kind, payload, self._session.signer
            )
        except Ambiguous:
            # Broadcast outcome unknown: the transaction may be in the pool
            self._reconciler.invalidate(identity)
            raise
        snapshot = await self._settle(identity, pending)
        return Outcome.ok(snapshot, tx_hash=pending.tx_hash, tx_status=pending.status)

    async def _settle(self, identity: str, pending: PendingTransaction) -> LoanSnapshot:
        """
        Map the tracker's terminal state, refreshing on CONFIRMED.

        Raises:
            Rejected: The transaction reverted.
            Ambiguous: The transaction was not observed within the wait window.
            LedgerUnavailable: Confirmed, but the follow-up refresh failed.
            TrackingCancelled: Confirmed, but the identity disconnected meanwhile.
        """
        tx_hash = pending.tx_hash
        status = pending.status

        if status is TransactionStatus.CONFIRMED:
            self._reconciler.invalidate(identity)
            try:
                snapshot = await self._refresh_with_retry(identity)
            except LedgerUnavailable as e:
                logger.error(f"{pending.kind.value} confirmed ({tx_hash}) but refresh failed: {e}")
                raise LedgerUnavailable(
                    f"Transaction confirmed but loans could not be refreshed: {e}",
                    tx_hash=tx_hash,
                    tx_status=status,
                )
            self._require_identity(identity, tx_hash=tx_hash, tx_status=status)
            return snapshot

        if status is TransactionStatus.FAILED:
            raise Rejected(
                f"Transaction {tx_hash} was included but reverted",
                tx_hash=tx_hash,
                tx_status=status,
            )

        # TIMED_OUT: may still land, so the cached snapshot can no longer be trusted
        self._reconciler.invalidate(identity)
        raise Ambiguous(
            f"Transaction {tx_hash} not confirmed within {self._tracker.max_wait_sec}s; "
            "refresh before retrying",
            tx_hash=tx_hash,
            tx_status=status,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_identity(
        self,
        identity: str,
        tx_hash: Optional[str] = None,
        tx_status: Optional[TransactionStatus] = None,
    ) -> None:
        """
        Raises:
            TrackingCancelled: `identity` was disconnected while the operation ran.
        """
        if self._session.current_identity() != identity:
            logger.warning(f"{identity} disconnected during the operation; stopping local work")
            raise TrackingCancelled(
                f"{identity} was disconnected", tx_hash=tx_hash, tx_status=tx_status
            )

    async def _refresh_with_retry(self, identity: str) -> LoanSnapshot:
        """
        Refresh with exponential backoff on LedgerUnavailable.

        Raises:
            LedgerUnavailable: All attempts failed.
        """
        delay = self._reconcile.backoff_initial_sec
        attempts = max(1, self._reconcile.max_attempts)

        for attempt in range(1, attempts + 1):
            try:
                return await self._reconciler.refresh(identity)
            except LedgerUnavailable as e:
                if attempt >= attempts:
                    logger.error(f"Refresh for {identity} failed after {attempt} attempt(s): {e}")
                    raise
                logger.warning(
                    f"Refresh attempt {attempt}/{attempts} for {identity} failed: {e}; "
                    f"retrying in {delay:.2f}s"
                )
                await self._clock.sleep(delay)
                delay = min(delay * self._reconcile.backoff_factor, self._reconcile.backoff_max_sec)

        raise LedgerUnavailable(f"Refresh for {identity} not attempted")

    async def _run(self, name: str, operation: Callable[[], Awaitable[Any]]) -> Outcome[Any]:
        """
        Await `operation`, converting exceptions into a failure Outcome.

        Plain return values are wrapped in Outcome.ok; Outcomes pass through.
        """
        try:
            value = await operation()
        except ChainLoanError as e:
            logger.info(f"{name} failed: {e.kind.value}: {e}")
            return Outcome.fail(e.kind, str(e), tx_hash=e.tx_hash, tx_status=e.tx_status)
        except Exception as e:
            logger.error(f"{name} failed unexpectedly: {e}", exc_info=True)
            return Outcome.fail(OutcomeKind.LEDGER_UNAVAILABLE, f"Unexpected error: {e}")
        if isinstance(value, Outcome):
            return value
        return Outcome.ok(value)

    def _validate_request(self, principal: Any, collateral: Any, duration_days: Any) -> None:
        """
        Raises:
            InvalidInput: A value is not a positive integer or is out of bounds.
        """
        limits = self._limits
        for name, value in (
            ("principal", principal),
            ("collateral", collateral),
            ("duration_days", duration_days),
        ):
            if not _is_int(value) or value <= 0:
                raise InvalidInput(f"{name} must be a positive integer, got {value!r}")

        if limits.max_principal is not None and principal > limits.max_principal:
            raise InvalidInput(f"principal {principal} exceeds limit {limits.max_principal}")
        if limits.max_collateral is not None and collateral > limits.max_collateral:
            raise InvalidInput(f"collateral {collateral} exceeds limit {limits.max_collateral}")
        if not limits.min_duration_days <= duration_days <= limits.max_duration_days:
            raise InvalidInput(
                f"duration_days must be within [{limits.min_duration_days}, "
                f"{limits.max_duration_days}], got {duration_days}"
            )


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
