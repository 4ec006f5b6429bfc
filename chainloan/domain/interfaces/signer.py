"""Signer protocol for identity and transaction authorization."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from ...models.transaction import TransactionHandle


@dataclass
class CallData:
    """
    Unsigned contract call prepared by a LedgerClient.

    `fields` holds any extra transaction fields the ledger client already
    resolved (gas, fee parameters, chainId); signers fill in the rest.
    """

    sender: str
    to: str
    data: str
    value: int = 0
    fields: Dict[str, Any] = field(default_factory=dict)

    def as_transaction(self) -> Dict[str, Any]:
        """Transaction dict in the shape JSON-RPC signers expect."""
        tx: Dict[str, Any] = dict(self.fields)
        tx.update({
            "from": self.sender,
            "to": self.to,
            "data": self.data,
            "value": self.value,
        })
        return tx


@runtime_checkable
class Signer(Protocol):
    """
    Protocol for signing capabilities (browser wallet, node-managed account,
    local key).

    Implementations:
    - Web3ProviderSigner
    - LocalAccountSigner

    Errors:
        request_accounts raises UserRejected when the user declines and
        NoSignerAvailable when the signing backend cannot be reached.
        sign_and_broadcast raises SignerDenied, InsufficientFunds,
        SubmissionRejected or LedgerUnavailable.
    """

    async def request_accounts(self) -> List[str]:
        """Ask the user to authorize accounts. May prompt."""
        ...

    async def list_accounts(self) -> List[str]:
        """Accounts already authorized. Never prompts."""
        ...

    async def sign_and_broadcast(self, call: CallData) -> TransactionHandle:
        """Sign `call` and broadcast it. Returns once accepted into the pool."""
        ...

    async def close(self) -> None:
        """Release transport resources."""
        ...


def first_account(accounts: Optional[List[str]]) -> Optional[str]:
    """First authorized account, or None."""
    if not accounts:
        return None
    return accounts[0]
