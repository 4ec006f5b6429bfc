"""
Domain exceptions for ChainLoan.

Components raise these inside the orchestrator; LoanOrchestrator converts
them into tagged Outcomes so no exception crosses the caller boundary.

The hierarchy distinguishes recoverable errors (the ledger node is slow or
unreachable, retry later) from fatal errors (bad configuration) and from
outcome errors, which end one operation attempt but say nothing about the
health of the system. Each class carries the OutcomeKind it maps to.
"""

from __future__ import annotations

from typing import Optional

from ..models.outcome import OutcomeKind
from ..models.transaction import TransactionStatus


class ChainLoanError(Exception):
    """
    Base class for all ChainLoan domain exceptions.

    `tx_hash` and `tx_status` identify the transaction involved, if one was
    broadcast, and are copied onto the failure Outcome.
    """

    kind: OutcomeKind = OutcomeKind.LEDGER_UNAVAILABLE

    def __init__(
        self,
        message: str = "",
        tx_hash: Optional[str] = None,
        tx_status: Optional[TransactionStatus] = None,
    ):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.tx_status = tx_status


class RecoverableError(ChainLoanError):
    """Transient infrastructure errors. Retried with backoff where reads allow it."""
    pass


class FatalError(ChainLoanError):
    """Errors requiring operator intervention (configuration, wiring)."""
    pass


class OperationError(ChainLoanError):
    """Ends one operation attempt. Never retried automatically."""
    pass


# -----------------------------------------------------------------------------
# Infrastructure
# -----------------------------------------------------------------------------

class LedgerUnavailable(RecoverableError):
    """Ledger node unreachable, timed out, or returned an inconsistent read."""

    kind = OutcomeKind.LEDGER_UNAVAILABLE


class ConfigurationError(FatalError):
    """Invalid system configuration."""
    pass


# -----------------------------------------------------------------------------
# Local checks
# -----------------------------------------------------------------------------

class InvalidInput(OperationError):
    """Input failed local validation. No ledger call was made."""

    kind = OutcomeKind.INVALID_INPUT


class OperationInProgress(OperationError):
    """A mutation for this identity is still in flight."""

    kind = OutcomeKind.OPERATION_IN_PROGRESS


class NotFound(OperationError):
    """Loan index outside [0, count)."""

    kind = OutcomeKind.NOT_FOUND


class AlreadyRepaid(OperationError):
    """Cached record already shows the loan repaid."""

    kind = OutcomeKind.ALREADY_REPAID


# -----------------------------------------------------------------------------
# Identity / signing
# -----------------------------------------------------------------------------

class NoSignerAvailable(OperationError):
    """No signer capability exists in this environment."""

    kind = OutcomeKind.NO_SIGNER_AVAILABLE


class UserRejected(OperationError):
    """User declined the account connection request."""

    kind = OutcomeKind.USER_REJECTED


class SignerDenied(OperationError):
    """User declined to sign the transaction."""

    kind = OutcomeKind.SIGNER_DENIED


# -----------------------------------------------------------------------------
# Broadcast
# -----------------------------------------------------------------------------

class SubmissionRejected(OperationError):
    """Malformed payload or ledger-side precondition failure at broadcast time."""

    kind = OutcomeKind.SUBMISSION_REJECTED


class InsufficientFunds(OperationError):
    """Account cannot pay for the transaction."""

    kind = OutcomeKind.INSUFFICIENT_FUNDS


# -----------------------------------------------------------------------------
# Tracking
# -----------------------------------------------------------------------------

class TrackingCancelled(OperationError):
    """Polling was cancelled by disconnect. Final outcome unknown locally."""

    kind = OutcomeKind.CANCELLED


class Rejected(OperationError):
    """Transaction was included but reverted."""

    kind = OutcomeKind.REJECTED


class Ambiguous(OperationError):
    """Transaction not observed within the wait window. It may still land."""

    kind = OutcomeKind.AMBIGUOUS
