"""
EVM signers.

- Web3ProviderSigner: accounts managed by the provider (wallet bridge or a
  node with unlocked accounts). Signing happens on the other side of the
  JSON-RPC connection and may prompt the user.
- LocalAccountSigner: a private key held in process, signed with eth-account
  and broadcast as a raw transaction.
"""

from __future__ import annotations

from typing import Any, Dict, List

from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import Web3RPCError

from ....domain.exceptions import (
    ConfigurationError,
    NoSignerAvailable,
    SignerDenied,
    UserRejected,
)
from ....domain.interfaces.signer import CallData
from ....models.transaction import TransactionHandle
from ....utils.logging_setup import get_logger
from .errors import (
    METHOD_NOT_FOUND_CODE,
    TRANSPORT_ERRORS,
    UNAUTHORIZED_CODE,
    USER_REJECTED_CODE,
    rpc_error_code,
    rpc_error_message,
    translate_broadcast_error,
    translate_write_error,
)


logger = get_logger(__name__)

_FEE_FIELDS = ("gasPrice", "maxFeePerGas")


class Web3ProviderSigner:
    """Signer whose accounts and keys live behind the JSON-RPC provider."""

    def __init__(self, w3: AsyncWeb3):
        self.w3 = w3

    async def request_accounts(self) -> List[str]:
        """
        eth_requestAccounts (EIP-1102), falling back to eth_accounts for
        providers that do not implement the prompt.

        Raises:
            UserRejected: User declined the connection prompt.
            NoSignerAvailable: Provider unreachable.
        """
        try:
            accounts = await self.w3.manager.coro_request("eth_requestAccounts", [])
        except Web3RPCError as e:
            code = rpc_error_code(e)
            if code == METHOD_NOT_FOUND_CODE:
                logger.debug("eth_requestAccounts unsupported, using eth_accounts")
                return await self.list_accounts()
            if code in (USER_REJECTED_CODE, UNAUTHORIZED_CODE):
                raise UserRejected(f"Connection declined: {rpc_error_message(e)}")
            raise NoSignerAvailable(f"Account request failed: {rpc_error_message(e)}")
        except TRANSPORT_ERRORS as e:
            raise NoSignerAvailable(f"Signer provider unreachable: {e}")

        return [str(a) for a in accounts or []]

    async def list_accounts(self) -> List[str]:
        try:
            accounts = await self.w3.eth.accounts
        except Web3RPCError as e:
            raise NoSignerAvailable(f"eth_accounts failed: {rpc_error_message(e)}")
        except TRANSPORT_ERRORS as e:
            raise NoSignerAvailable(f"Signer provider unreachable: {e}")
        return [str(a) for a in accounts]

    async def sign_and_broadcast(self, call: CallData) -> TransactionHandle:
        try:
            tx_hash = await self.w3.eth.send_transaction(call.as_transaction())
        except Exception as e:
            raise translate_broadcast_error(e, "eth_sendTransaction")
        return TransactionHandle(Web3.to_hex(tx_hash))

    async def close(self) -> None:
        return None


class LocalAccountSigner:
    """
    Signer holding a private key in process.

    The key is never logged; only the derived address is.
    """

    def __init__(self, w3: AsyncWeb3, private_key: str):
        if not private_key:
            raise ConfigurationError("signer.mode=local requires a private key")
        try:
            self.account = Account.from_key(private_key)
        except Exception as e:
            # eth_keys raises its own ValidationError for malformed keys
            raise ConfigurationError(f"Invalid signer private key: {type(e).__name__}")
        self.w3 = w3
        logger.info(f"Local signer ready for {self.account.address}")

    @property
    def address(self) -> str:
        return self.account.address

    async def request_accounts(self) -> List[str]:
        return [self.account.address]

    async def list_accounts(self) -> List[str]:
        return [self.account.address]

    async def sign_and_broadcast(self, call: CallData) -> TransactionHandle:
        if Web3.to_checksum_address(call.sender) != self.account.address:
            raise SignerDenied(f"Local key cannot sign for {call.sender}")

        try:
            tx = await self._complete(call)
            signed = self.account.sign_transaction(tx)
        except Exception as e:
            raise translate_write_error(e, "sign_transaction")

        # The hash is known before sending, so a lost response can still be tracked
        local_hash = Web3.to_hex(signed.hash)
        raw_tx = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
        try:
            tx_hash = await self.w3.eth.send_raw_transaction(raw_tx)
        except Exception as e:
            raise translate_broadcast_error(e, "send_raw_transaction", tx_hash=local_hash)

        return TransactionHandle(Web3.to_hex(tx_hash))

    async def _complete(self, call: CallData) -> Dict[str, Any]:
        """Fill nonce, chainId, fee and gas fields the ledger client left out."""
        tx = call.as_transaction()
        tx.pop("from", None)
        tx["to"] = Web3.to_checksum_address(tx["to"])

        if "nonce" not in tx:
            tx["nonce"] = await self.w3.eth.get_transaction_count(self.account.address, "pending")
        if "chainId" not in tx:
            tx["chainId"] = await self.w3.eth.chain_id
        if not any(k in tx for k in _FEE_FIELDS):
            tx["gasPrice"] = await self.w3.eth.gas_price
        if "gas" not in tx:
            tx["gas"] = await self.w3.eth.estimate_gas({**tx, "from": self.account.address})
        return tx

    async def close(self) -> None:
        return None
