"""Unit tests for Loan and LoanSnapshot."""

import pytest

from chainloan.models.loan import Loan, LoanSnapshot, LoanStatus


class TestLoan:
    """Tests for the Loan record."""

    def test_status_from_flags(self, sample_loan):
        """Status mirrors the active/repaid flags."""
        pending = Loan(0, 100, 1, 7, active=False, repaid=False)
        repaid = Loan(1, 100, 1, 7, active=True, repaid=True)

        assert pending.status is LoanStatus.PENDING
        assert sample_loan.status is LoanStatus.ACTIVE
        assert repaid.status is LoanStatus.REPAID

    def test_repayable_only_when_active_and_not_repaid(self, sample_loan):
        """Only an active, unrepaid loan can be repaid."""
        assert sample_loan.repayable is True
        assert Loan(0, 100, 1, 7, active=False, repaid=False).repayable is False
        assert Loan(0, 100, 1, 7, active=True, repaid=True).repayable is False

    def test_repaid_requires_active(self):
        """A loan cannot be repaid without being active."""
        with pytest.raises(ValueError):
            Loan(0, 100, 1, 7, active=False, repaid=True)

    def test_negative_index_rejected(self):
        """Indices start at zero."""
        with pytest.raises(ValueError):
            Loan(-1, 100, 1, 7, active=True, repaid=False)

    def test_immutable(self, sample_loan):
        """Loan fields cannot be reassigned."""
        with pytest.raises(AttributeError):
            sample_loan.repaid = True


class TestLoanSnapshot:
    """Tests for LoanSnapshot."""

    def test_len_and_iteration_keep_ledger_order(self, sample_snapshot):
        """Iteration follows the ledger's index order."""
        assert len(sample_snapshot) == 2
        assert [loan.index for loan in sample_snapshot] == [0, 1]

    def test_get_out_of_range_returns_none(self, sample_snapshot):
        """get() returns None outside the loan range."""
        assert sample_snapshot.get(0).principal_amount == 1000
        assert sample_snapshot.get(2) is None
        assert sample_snapshot.get(-1) is None

    def test_active_loans_and_outstanding_principal(self, sample_snapshot):
        """Only repayable loans count as outstanding."""
        assert [loan.index for loan in sample_snapshot.active_loans] == [0]
        assert sample_snapshot.outstanding_principal == 1000

    def test_empty_snapshot(self):
        """A snapshot without loans has no outstanding principal."""
        snapshot = LoanSnapshot(identity="0xabc")

        assert len(snapshot) == 0
        assert snapshot.get(0) is None
        assert snapshot.outstanding_principal == 0
