"""Unit tests for LoanOrchestrator against the in-memory ledger."""

import asyncio

import pytest

from config.models import LoanLimitsConfig, ReconcileConfig
from chainloan.infrastructure.adapters.memory_ledger import MemorySigner
from chainloan.models.loan import Loan, LoanSnapshot
from chainloan.models.outcome import OutcomeKind
from chainloan.models.transaction import TransactionHandle, TransactionStatus


async def _wait_until(predicate, max_yields: int = 500) -> None:
    for _ in range(max_yields):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


class TestRequestLoan:
    """request_loan() end to end."""

    @pytest.mark.asyncio
    async def test_confirmed_within_three_polls(self, ledger, make_orchestrator, identity):
        """Inclusion on the third poll yields OK with the refreshed snapshot."""
        ledger.include_after_polls = 3
        orchestrator = make_orchestrator()

        outcome = await orchestrator.request_loan(1000, 5, 30)

        assert outcome.is_ok()
        assert outcome.tx_status is TransactionStatus.CONFIRMED
        assert outcome.tx_hash is not None
        snapshot = outcome.unwrap()
        assert isinstance(snapshot, LoanSnapshot)
        assert snapshot.loans == (
            Loan(index=0, principal_amount=1000, collateral_amount=5, duration_days=30, active=True, repaid=False),
        )
        assert orchestrator.snapshot() is snapshot
        assert ledger.status_reads == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("args", [
        (0, 5, 30),
        (-1, 5, 30),
        (1000, 0, 30),
        (1000, 5, 0),
        (True, 5, 30),
        (1000.0, 5, 30),
        ("1000", 5, 30),
        (1000, 5, 366),
    ])
    async def test_invalid_input_makes_no_ledger_calls(self, ledger, make_orchestrator, args):
        """Malformed arguments are refused before touching the ledger."""
        orchestrator = make_orchestrator()

        outcome = await orchestrator.request_loan(*args)

        assert outcome.kind is OutcomeKind.INVALID_INPUT
        assert ledger.total_calls == 0

    @pytest.mark.asyncio
    async def test_configured_limits(self, ledger, make_orchestrator):
        """Configured principal and collateral caps are enforced inclusively."""
        orchestrator = make_orchestrator(limits=LoanLimitsConfig(max_principal=500, max_collateral=10))

        assert (await orchestrator.request_loan(501, 5, 30)).kind is OutcomeKind.INVALID_INPUT
        assert (await orchestrator.request_loan(500, 11, 30)).kind is OutcomeKind.INVALID_INPUT
        assert (await orchestrator.request_loan(500, 10, 30)).is_ok()

    @pytest.mark.asyncio
    async def test_no_signer(self, ledger, make_orchestrator):
        """Without a signer nothing is read or submitted."""
        orchestrator = make_orchestrator(no_signer=True)

        outcome = await orchestrator.request_loan(1000, 5, 30)

        assert outcome.kind is OutcomeKind.NO_SIGNER_AVAILABLE
        assert ledger.total_calls == 0

    @pytest.mark.asyncio
    async def test_user_rejects_connection(self, ledger, make_orchestrator, identity):
        """A declined connection prompt is USER_REJECTED with no submission."""
        orchestrator = make_orchestrator(signer=MemorySigner(ledger, accounts=[identity], reject_connect=True))

        outcome = await orchestrator.request_loan(1000, 5, 30)

        assert outcome.kind is OutcomeKind.USER_REJECTED
        assert ledger.submissions == []

    @pytest.mark.asyncio
    async def test_signer_denies(self, ledger, make_orchestrator, identity):
        """A declined signature releases the mutation guard."""
        orchestrator = make_orchestrator(signer=MemorySigner(ledger, accounts=[identity], deny_signing=True))

        outcome = await orchestrator.request_loan(1000, 5, 30)

        assert outcome.kind is OutcomeKind.SIGNER_DENIED
        assert not orchestrator.mutation_in_flight

    @pytest.mark.asyncio
    async def test_insufficient_funds(self, ledger, make_orchestrator):
        """A sender that cannot cover gas gets INSUFFICIENT_FUNDS."""
        ledger.insufficient_funds = True
        orchestrator = make_orchestrator()

        outcome = await orchestrator.request_loan(1000, 5, 30)

        assert outcome.kind is OutcomeKind.INSUFFICIENT_FUNDS

    @pytest.mark.asyncio
    async def test_reverted_is_rejected(self, ledger, make_orchestrator):
        """An included but reverted transaction is REJECTED with its hash."""
        ledger.revert_next = True
        orchestrator = make_orchestrator()

        outcome = await orchestrator.request_loan(1000, 5, 30)

        assert outcome.kind is OutcomeKind.REJECTED
        assert outcome.tx_status is TransactionStatus.FAILED
        assert outcome.tx_hash is not None

    @pytest.mark.asyncio
    async def test_concurrent_requests(self, ledger, make_orchestrator):
        """Only one mutation in flight: the second call is refused, one submission happens."""
        ledger.include_after_polls = 2
        orchestrator = make_orchestrator()

        first, second = await asyncio.gather(
            orchestrator.request_loan(1000, 5, 30),
            orchestrator.request_loan(2000, 5, 30),
        )

        assert first.is_ok()
        assert second.kind is OutcomeKind.OPERATION_IN_PROGRESS
        assert len(ledger.submissions) == 1

    @pytest.mark.asyncio
    async def test_request_after_previous_completes(self, make_orchestrator):
        """The guard is released once a mutation finishes."""
        orchestrator = make_orchestrator()

        assert (await orchestrator.request_loan(1000, 5, 30)).is_ok()
        outcome = await orchestrator.request_loan(2000, 5, 30)

        assert outcome.is_ok()
        assert len(outcome.unwrap()) == 2


class TestTimeout:
    """TIMED_OUT handling."""

    @pytest.mark.asyncio
    async def test_timeout_is_ambiguous_then_manual_refresh_sees_loan(self, ledger, make_orchestrator, clock):
        """A timed-out request is AMBIGUOUS and a later refresh finds the loan."""
        ledger.include_after_polls = None
        orchestrator = make_orchestrator(poll_interval_sec=2.0, max_wait_sec=10.0)

        outcome = await orchestrator.request_loan(1000, 5, 30)

        assert outcome.kind is OutcomeKind.AMBIGUOUS
        assert outcome.tx_status is TransactionStatus.TIMED_OUT
        assert not outcome.is_ok()
        assert ledger.status_reads <= 5
        assert len(ledger.submissions) == 1

        ledger.include(TransactionHandle(outcome.tx_hash))
        refreshed = await orchestrator.refresh_loans()

        assert refreshed.is_ok()
        assert len(refreshed.unwrap()) == 1
        assert refreshed.unwrap().get(0).principal_amount == 1000
        assert len(ledger.submissions) == 1


class TestLostBroadcastResponse:
    """A broadcast whose response never arrived is reported as AMBIGUOUS."""

    @pytest.mark.asyncio
    async def test_request_is_ambiguous_with_hash(self, ledger, make_orchestrator, identity):
        """The hash is reported and a later refresh shows the loan once included."""
        orchestrator = make_orchestrator(signer=MemorySigner(ledger, accounts=[identity], lose_response=True))

        outcome = await orchestrator.request_loan(1000, 5, 30)

        assert outcome.kind is OutcomeKind.AMBIGUOUS
        assert not outcome.kind.user_retryable
        assert outcome.tx_status is TransactionStatus.SUBMITTED
        assert outcome.tx_hash == ledger.submissions[0].handle.tx_hash
        assert not orchestrator.mutation_in_flight

        ledger.include(TransactionHandle(outcome.tx_hash))
        refreshed = await orchestrator.refresh_loans()

        assert len(refreshed.unwrap()) == 1
        assert len(ledger.submissions) == 1

    @pytest.mark.asyncio
    async def test_repay_invalidates_snapshot(self, ledger, make_orchestrator, identity):
        """The next repay re-reads the ledger instead of trusting the cached view."""
        ledger.seed_loan(identity, amount=1000, collateral_amount=5, duration=30)
        signer = MemorySigner(ledger, accounts=[identity])
        orchestrator = make_orchestrator(signer=signer)
        assert (await orchestrator.refresh_loans()).is_ok()

        signer.lose_response = True
        ambiguous = await orchestrator.repay_loan(0)
        assert ambiguous.kind is OutcomeKind.AMBIGUOUS
        ledger.include(TransactionHandle(ambiguous.tx_hash))

        outcome = await orchestrator.repay_loan(0)

        assert outcome.kind is OutcomeKind.ALREADY_REPAID
        assert len(ledger.submissions) == 1


class TestRepayLoan:
    """repay_loan() checks against the cached snapshot."""

    @pytest.mark.asyncio
    async def test_repay_refreshes_when_nothing_cached(self, ledger, make_orchestrator, identity):
        """Repay reads the ledger first when no snapshot is cached."""
        ledger.seed_loan(identity, amount=1000, collateral_amount=5, duration=30)
        orchestrator = make_orchestrator()

        outcome = await orchestrator.repay_loan(0)

        assert outcome.is_ok()
        assert outcome.unwrap().get(0).repaid

    @pytest.mark.asyncio
    async def test_double_repay(self, ledger, make_orchestrator, identity):
        """The second repay is refused locally without a second submission."""
        ledger.seed_loan(identity, amount=1000, collateral_amount=5, duration=30)
        orchestrator = make_orchestrator()

        first = await orchestrator.repay_loan(0)
        second = await orchestrator.repay_loan(0)

        assert first.is_ok()
        assert second.kind is OutcomeKind.ALREADY_REPAID
        assert len(ledger.submissions) == 1

    @pytest.mark.asyncio
    async def test_unknown_index(self, ledger, make_orchestrator, identity):
        """An index beyond the snapshot is NOT_FOUND without submitting."""
        ledger.seed_loan(identity, amount=1000, collateral_amount=5, duration=30)
        orchestrator = make_orchestrator()

        outcome = await orchestrator.repay_loan(4)

        assert outcome.kind is OutcomeKind.NOT_FOUND
        assert ledger.submissions == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("index", [-1, True, 1.0, "0"])
    async def test_invalid_index(self, ledger, make_orchestrator, index):
        """Non-integer or negative indices are refused locally."""
        orchestrator = make_orchestrator()

        outcome = await orchestrator.repay_loan(index)

        assert outcome.kind is OutcomeKind.INVALID_INPUT
        assert ledger.total_calls == 0

    @pytest.mark.asyncio
    async def test_stale_snapshot_refreshed_before_check(self, ledger, make_orchestrator, identity):
        """After an ambiguous repay lands out of band, the next repay sees it repaid."""
        ledger.seed_loan(identity, amount=1000, collateral_amount=5, duration=30)
        orchestrator = make_orchestrator()
        assert (await orchestrator.refresh_loans()).is_ok()

        ledger.include_after_polls = None
        ambiguous = await orchestrator.repay_loan(0)
        assert ambiguous.kind is OutcomeKind.AMBIGUOUS
        ledger.include(TransactionHandle(ambiguous.tx_hash))

        outcome = await orchestrator.repay_loan(0)

        assert outcome.kind is OutcomeKind.ALREADY_REPAID
        assert len(ledger.submissions) == 1


class TestRefresh:
    """refresh_loans() and its retry policy."""

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self, ledger, make_orchestrator, clock, identity):
        """Transient read failures are retried with growing delays."""
        ledger.seed_loan(identity, amount=1, collateral_amount=1, duration=1)
        ledger.fail_reads_remaining = 2
        orchestrator = make_orchestrator(
            reconcile=ReconcileConfig(max_attempts=3, backoff_initial_sec=0.5, backoff_factor=2.0)
        )

        outcome = await orchestrator.refresh_loans()

        assert outcome.is_ok()
        assert clock.sleep_calls == 2
        assert clock.monotonic() == pytest.approx(1.5)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, ledger, make_orchestrator, clock):
        """Refresh stops after the configured number of attempts."""
        ledger.fail_reads = True
        orchestrator = make_orchestrator(reconcile=ReconcileConfig(max_attempts=3))

        outcome = await orchestrator.refresh_loans()

        assert outcome.kind is OutcomeKind.LEDGER_UNAVAILABLE
        assert clock.sleep_calls == 2

    @pytest.mark.asyncio
    async def test_backoff_capped(self, ledger, make_orchestrator, clock):
        """Backoff delays never exceed backoff_max_sec."""
        ledger.fail_reads = True
        orchestrator = make_orchestrator(
            reconcile=ReconcileConfig(
                max_attempts=4, backoff_initial_sec=1.0, backoff_factor=10.0, backoff_max_sec=3.0
            )
        )

        await orchestrator.refresh_loans()

        assert clock.monotonic() == pytest.approx(1.0 + 3.0 + 3.0)

    @pytest.mark.asyncio
    async def test_confirmed_but_refresh_failed(self, ledger, make_orchestrator):
        """The caller learns the mutation landed even though the view could not be refreshed."""
        ledger.fail_reads = True
        orchestrator = make_orchestrator()

        outcome = await orchestrator.request_loan(1000, 5, 30)

        assert outcome.kind is OutcomeKind.LEDGER_UNAVAILABLE
        assert outcome.confirmed
        assert outcome.tx_hash is not None


class TestSession:
    """connect/restore/disconnect and read accessors."""

    @pytest.mark.asyncio
    async def test_connect(self, make_orchestrator, identity):
        """connect() returns the authorized identity."""
        orchestrator = make_orchestrator()

        outcome = await orchestrator.connect()

        assert outcome.unwrap() == identity

    @pytest.mark.asyncio
    async def test_restore_without_authorization(self, make_orchestrator):
        """restore() is OK with no identity when nothing was authorized."""
        outcome = await make_orchestrator().restore()

        assert outcome.is_ok()
        assert outcome.value is None

    @pytest.mark.asyncio
    async def test_get_balance(self, ledger, make_orchestrator, identity):
        """get_balance() reports the connected identity's balance."""
        ledger.set_balance(identity, 42)

        assert (await make_orchestrator().get_balance()).unwrap() == 42

    @pytest.mark.asyncio
    async def test_snapshot_none_before_connect(self, make_orchestrator):
        """No snapshot is exposed before an identity connects."""
        assert make_orchestrator().snapshot() is None

    @pytest.mark.asyncio
    async def test_disconnect_cancels_tracking(self, ledger, make_orchestrator, identity):
        """Disconnecting while polling yields CANCELLED with the broadcast hash."""
        ledger.include_after_polls = None
        orchestrator = make_orchestrator(max_wait_sec=1000.0)

        request = asyncio.create_task(orchestrator.request_loan(1000, 5, 30))
        await _wait_until(lambda: ledger.status_reads >= 1)

        disconnected = await orchestrator.disconnect()
        outcome = await request

        assert disconnected.unwrap() == identity
        assert outcome.kind is OutcomeKind.CANCELLED
        assert outcome.tx_hash == ledger.submissions[0].handle.tx_hash
        assert not orchestrator.mutation_in_flight
        assert orchestrator.snapshot() is None
        assert len(ledger.submissions) == 1

    @pytest.mark.asyncio
    async def test_disconnect_before_broadcast(self, ledger, make_orchestrator, identity):
        """Disconnecting while repay refreshes its view broadcasts nothing."""
        ledger.seed_loan(identity, amount=1000, collateral_amount=5, duration=30)
        ledger.latency_sec = 0.01
        orchestrator = make_orchestrator()
        assert (await orchestrator.connect()).is_ok()

        repay = asyncio.create_task(orchestrator.repay_loan(0))
        await _wait_until(lambda: ledger.read_calls >= 1)

        await orchestrator.disconnect()
        outcome = await repay

        assert outcome.kind is OutcomeKind.CANCELLED
        assert ledger.submissions == []
        assert not orchestrator.mutation_in_flight

        assert (await orchestrator.connect()).is_ok()
        assert orchestrator.snapshot() is None

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, ledger, make_orchestrator):
        """Unexpected exceptions become a failure outcome instead of escaping."""
        async def broken(identity):
            raise RuntimeError("bug")

        ledger.get_balance = broken
        orchestrator = make_orchestrator()

        outcome = await orchestrator.get_balance()

        assert outcome.kind is OutcomeKind.LEDGER_UNAVAILABLE
