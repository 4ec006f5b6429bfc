"""
Loan State Reconciler - rebuild an identity's loan snapshot from the ledger.

A refresh reads the loan count, then fetches every record concurrently and
only installs the result once all reads have returned. Any failing read
aborts the whole refresh, so callers never see a truncated snapshot.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Dict, Iterable, List, Optional, Set

from ...infrastructure.stores.snapshot_store import SnapshotStore
from ...models.loan import Loan, LoanSnapshot
from ...utils.logging_setup import get_logger
from ..clock import Clock, SystemClock
from ..exceptions import LedgerUnavailable, NotFound
from ..interfaces.ledger_client import LedgerClient


logger = get_logger(__name__)


class LoanStateReconciler:
    """
    Loan snapshot reconciliation service.

    Owns the SnapshotStore. Snapshots are derived from ledger reads only;
    nothing is written into them speculatively.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        store: Optional[SnapshotStore] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize reconciler.

        Args:
            ledger: Ledger client for reads.
            store: Snapshot store (a private one is created if omitted).
            clock: Time source for `fetched_at`.
        """
        self._ledger = ledger
        self._store = store if store is not None else SnapshotStore()
        self._clock = clock or SystemClock()
        self._versions = itertools.count(1)
        self._stale: Set[str] = set()
        # Bumped by forget(); a refresh started under an older generation is not installed
        self._generations: Dict[str, int] = {}

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def snapshot(self, identity: str) -> Optional[LoanSnapshot]:
        """Last reconciled snapshot for `identity`, or None."""
        return self._store.get(identity)

    def is_stale(self, identity: str) -> bool:
        """True when a confirmed mutation happened after the stored snapshot."""
        return identity in self._stale or identity not in self._store

    def invalidate(self, identity: str) -> None:
        """
        Mark the stored snapshot as outdated.

        The snapshot stays readable (it is still the last reconciled truth)
        until the next successful refresh replaces it.
        """
        self._stale.add(identity)
        logger.debug(f"Snapshot for {identity} invalidated")

    def forget(self, identity: str) -> None:
        """Drop everything held for `identity`, including refreshes still in flight."""
        self._generations[identity] = self._generations.get(identity, 0) + 1
        self._stale.discard(identity)
        self._store.discard(identity)

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    async def refresh(self, identity: str) -> LoanSnapshot:
        """
        Fetch all loans for `identity` and install a new snapshot.

        Returns:
            The installed snapshot, or the stored one if a newer refresh
            completed first. If forget(identity) ran meanwhile, the fetched
            snapshot is returned without being installed.

        Raises:
            LedgerUnavailable: Count or any record read failed, or reads
                were inconsistent with the count.
        """
        version = next(self._versions)
        generation = self._generations.get(identity, 0)
        count = await self._ledger.get_loan_count(identity)
        if count < 0:
            raise LedgerUnavailable(f"Ledger returned negative loan count {count}")

        loans = await self._fetch_all(identity, count)
        snapshot = LoanSnapshot(
            identity=identity,
            loans=tuple(loans),
            as_of_version=version,
            fetched_at=self._clock.now(),
        )

        if self._generations.get(identity, 0) != generation:
            logger.info(f"Snapshot v{version} for {identity} not installed: identity was forgotten")
            return snapshot

        if self._store.replace(snapshot):
            self._stale.discard(identity)
            logger.info(f"Snapshot v{version} for {identity}: {count} loan(s)")
            return snapshot

        current = self._store.get(identity)
        return current if current is not None else snapshot

    async def _fetch_all(self, identity: str, count: int) -> List[Loan]:
        """Fetch indices 0..count-1 concurrently; fail fast on the first error."""
        if count == 0:
            return []

        tasks = [
            asyncio.create_task(self._fetch_one(identity, index))
            for index in range(count)
        ]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            failed = [t for t in done if t.exception() is not None]
            if failed:
                raise failed[0].exception()
        finally:
            self._cancel(tasks)

        return [task.result() for task in tasks]

    async def _fetch_one(self, identity: str, index: int) -> Loan:
        try:
            loan = await self._ledger.get_loan(identity, index)
        except NotFound as e:
            raise LedgerUnavailable(
                f"Inconsistent read for {identity}: loan {index} missing below count ({e})"
            )
        if loan.index != index:
            raise LedgerUnavailable(
                f"Inconsistent read for {identity}: asked for loan {index}, got {loan.index}"
            )
        return loan

    @staticmethod
    def _cancel(tasks: Iterable[asyncio.Task]) -> None:
        for task in tasks:
            if not task.done():
                task.cancel()
