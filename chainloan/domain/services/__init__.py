"""Domain services."""

from .loan_reconciler import LoanStateReconciler
from .signer_session import SignerSession
from .transaction_tracker import TransactionTracker

__all__ = ["LoanStateReconciler", "SignerSession", "TransactionTracker"]
