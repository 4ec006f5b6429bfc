"""web3-backed ledger client and signers for the CryptoLoan contract."""

from .ledger_client import Web3LedgerClient, create_async_web3, load_loan_abi
from .signers import LocalAccountSigner, Web3ProviderSigner

__all__ = [
    "Web3LedgerClient",
    "create_async_web3",
    "load_loan_abi",
    "LocalAccountSigner",
    "Web3ProviderSigner",
]
