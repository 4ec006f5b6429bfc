"""Pytest configuration and fixtures."""

from typing import Optional

import pytest

from config.models import LoanLimitsConfig, ReconcileConfig
from chainloan.application.orchestrator import LoanOrchestrator
from chainloan.domain.clock import SimulatedClock
from chainloan.domain.services import LoanStateReconciler, SignerSession, TransactionTracker
from chainloan.infrastructure.adapters.memory_ledger import InMemoryLedger, MemorySigner
from chainloan.models.loan import Loan, LoanSnapshot

ALICE = "0x00000000000000000000000000000000000a11ce"
BOB = "0x0000000000000000000000000000000000000b0b"


@pytest.fixture
def identity() -> str:
    """Account the default MemorySigner authorizes."""
    return ALICE


@pytest.fixture
def clock() -> SimulatedClock:
    return SimulatedClock()


@pytest.fixture
def ledger() -> InMemoryLedger:
    """Ledger that includes transactions on the first status poll."""
    return InMemoryLedger(include_after_polls=1)


@pytest.fixture
def signer(ledger: InMemoryLedger) -> MemorySigner:
    return MemorySigner(ledger, accounts=[ALICE])


@pytest.fixture
def tracker(ledger: InMemoryLedger, clock: SimulatedClock) -> TransactionTracker:
    return TransactionTracker(ledger, poll_interval_sec=2.0, max_wait_sec=10.0, clock=clock)


@pytest.fixture
def reconciler(ledger: InMemoryLedger, clock: SimulatedClock) -> LoanStateReconciler:
    return LoanStateReconciler(ledger, clock=clock)


@pytest.fixture
def make_orchestrator(ledger: InMemoryLedger, clock: SimulatedClock):
    """Factory building an orchestrator over the shared ledger and clock."""

    def _make(
        signer: Optional[MemorySigner] = None,
        no_signer: bool = False,
        poll_interval_sec: float = 2.0,
        max_wait_sec: float = 10.0,
        limits: Optional[LoanLimitsConfig] = None,
        reconcile: Optional[ReconcileConfig] = None,
    ) -> LoanOrchestrator:
        if signer is None and not no_signer:
            signer = MemorySigner(ledger, accounts=[ALICE])
        session = SignerSession(None if no_signer else signer)
        tracker = TransactionTracker(
            ledger,
            poll_interval_sec=poll_interval_sec,
            max_wait_sec=max_wait_sec,
            clock=clock,
        )
        reconciler = LoanStateReconciler(ledger, clock=clock)
        return LoanOrchestrator(
            session=session,
            ledger=ledger,
            tracker=tracker,
            reconciler=reconciler,
            limits=limits,
            reconcile=reconcile or ReconcileConfig(max_attempts=3, backoff_initial_sec=0.5),
            clock=clock,
        )

    return _make


@pytest.fixture
def sample_loan() -> Loan:
    return Loan(
        index=0,
        principal_amount=1000,
        collateral_amount=5,
        duration_days=30,
        active=True,
        repaid=False,
    )


@pytest.fixture
def sample_snapshot(sample_loan: Loan) -> LoanSnapshot:
    repaid = Loan(
        index=1,
        principal_amount=2000,
        collateral_amount=10,
        duration_days=60,
        active=True,
        repaid=True,
    )
    return LoanSnapshot(identity=ALICE, loans=(sample_loan, repaid), as_of_version=1)
