"""Domain interfaces (protocols) for external collaborators."""

from .ledger_client import LedgerClient
from .signer import CallData, Signer, first_account

__all__ = ["LedgerClient", "CallData", "Signer", "first_account"]
