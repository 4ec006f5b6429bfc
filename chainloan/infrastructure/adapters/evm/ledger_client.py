"""
EVM ledger client for the CryptoLoan contract.

Handles:
- Loan count / loan record / balance reads
- Building requestLoan / repayLoan calls (gas estimation surfaces reverts)
- Receipt lookups for confirmation tracking

Uses web3's AsyncWeb3 over HTTP JSON-RPC, so every call suspends instead of
blocking the event loop.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TransactionNotFound

from config.models import LedgerConfig

from ....domain.exceptions import (
    ConfigurationError,
    LedgerUnavailable,
    NotFound,
    SubmissionRejected,
)
from ....domain.interfaces.signer import CallData, Signer
from ....models.loan import Loan
from ....models.transaction import (
    PENDING,
    InclusionState,
    InclusionStatus,
    TransactionHandle,
    TransactionKind,
)
from ....utils.logging_setup import get_logger
from .errors import translate_read_error, translate_write_error


logger = get_logger(__name__)

ABI_PATH = Path(__file__).parent / "abi" / "CryptoLoan.json"

# Transaction fields a signer may need besides from/to/data/value
_PASSTHROUGH_FIELDS = (
    "gas",
    "gasPrice",
    "maxFeePerGas",
    "maxPriorityFeePerGas",
    "chainId",
    "nonce",
    "type",
)


def load_loan_abi(path: Path = ABI_PATH) -> List[Dict[str, Any]]:
    """Load the CryptoLoan ABI from its JSON artifact."""
    with open(path) as f:
        artifact = json.load(f)
    return artifact["abi"] if isinstance(artifact, dict) else artifact


def create_async_web3(config: LedgerConfig) -> AsyncWeb3:
    """AsyncWeb3 over HTTP with the configured request timeout."""
    provider = AsyncWeb3.AsyncHTTPProvider(
        config.rpc_url,
        request_kwargs={"timeout": aiohttp.ClientTimeout(total=config.request_timeout_sec)},
    )
    return AsyncWeb3(provider)


class Web3LedgerClient:
    """
    LedgerClient backed by an EVM node.

    Identities are addresses; they are checksummed before each call so the
    orchestrator can pass whatever case the signer returned.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        contract_address: str,
        abi: Optional[List[Dict[str, Any]]] = None,
    ):
        """
        Initialize ledger client.

        Args:
            w3: AsyncWeb3 instance.
            contract_address: Deployed CryptoLoan address.
            abi: Contract ABI (defaults to the bundled CryptoLoan ABI).

        Raises:
            ConfigurationError: If the contract address is missing or invalid.
        """
        if not contract_address or not Web3.is_address(contract_address):
            raise ConfigurationError(f"Invalid loan contract address: {contract_address!r}")

        self.w3 = w3
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.contract = w3.eth.contract(
            address=self.contract_address,
            abi=abi if abi is not None else load_loan_abi(),
        )

    @classmethod
    def from_config(cls, config: LedgerConfig) -> "Web3LedgerClient":
        return cls(create_async_web3(config), config.contract_address or "")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_loan_count(self, identity: str) -> int:
        try:
            count = await self.contract.functions.getLoanCount(self._address(identity)).call()
        except Exception as e:
            raise translate_read_error(e, f"getLoanCount({identity})")
        return int(count)

    async def get_loan(self, identity: str, index: int) -> Loan:
        if index < 0:
            raise NotFound(f"Loan index must be >= 0, got {index}")
        try:
            amount, collateral, duration, active, repaid = await self.contract.functions.loans(
                self._address(identity), index
            ).call()
        except ContractLogicError as e:
            # Public array getters revert on out-of-range indices
            raise NotFound(f"No loan {index} for {identity}: {e}")
        except Exception as e:
            raise translate_read_error(e, f"loans({identity}, {index})")

        try:
            return Loan(
                index=index,
                principal_amount=int(amount),
                collateral_amount=int(collateral),
                duration_days=int(duration),
                active=bool(active),
                repaid=bool(repaid),
            )
        except ValueError as e:
            raise LedgerUnavailable(f"Malformed loan record {index} for {identity}: {e}")

    async def get_balance(self, identity: str) -> int:
        try:
            return int(await self.w3.eth.get_balance(self._address(identity)))
        except Exception as e:
            raise translate_read_error(e, f"get_balance({identity})")

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def submit(
        self,
        kind: TransactionKind,
        payload: Dict[str, Any],
        signer: Signer,
        identity: str,
    ) -> TransactionHandle:
        call = await self.build_call(kind, payload, identity)
        handle = await signer.sign_and_broadcast(call)
        logger.info(f"Broadcast {kind.value} from {identity}: {handle}")
        return handle

    async def build_call(
        self,
        kind: TransactionKind,
        payload: Dict[str, Any],
        identity: str,
    ) -> CallData:
        """
        Build and gas-estimate the contract call for `kind`.

        Raises:
            SubmissionRejected: Malformed payload or the call would revert.
            InsufficientFunds: The sender cannot pay for gas.
            LedgerUnavailable: Node unreachable.
        """
        sender = self._address(identity)
        try:
            if kind is TransactionKind.REQUEST_LOAN:
                function = self.contract.functions.requestLoan(
                    payload["principal"],
                    payload["collateral"],
                    payload["duration_days"],
                )
            elif kind is TransactionKind.REPAY_LOAN:
                function = self.contract.functions.repayLoan(payload["index"])
            else:
                raise SubmissionRejected(f"Unsupported transaction kind {kind}")
        except KeyError as e:
            raise SubmissionRejected(f"Malformed {kind.value} payload, missing {e}")

        try:
            tx = await function.build_transaction({"from": sender})
        except Exception as e:
            raise translate_write_error(e, kind.value)

        return CallData(
            sender=sender,
            to=tx["to"],
            data=tx["data"],
            value=int(tx.get("value", 0)),
            fields={k: tx[k] for k in _PASSTHROUGH_FIELDS if k in tx},
        )

    # -------------------------------------------------------------------------
    # Confirmation
    # -------------------------------------------------------------------------

    async def get_transaction_status(self, handle: TransactionHandle) -> InclusionStatus:
        try:
            receipt = await self.w3.eth.get_transaction_receipt(handle.tx_hash)
        except TransactionNotFound:
            return PENDING
        except Exception as e:
            raise translate_read_error(e, f"get_transaction_receipt({handle})")

        state = InclusionState.SUCCESS if receipt["status"] == 1 else InclusionState.REVERTED
        return InclusionStatus(state, block_number=receipt.get("blockNumber"))

    async def close(self) -> None:
        try:
            await self.w3.provider.disconnect()
        except Exception as e:
            logger.debug(f"Provider disconnect failed: {e}")

    @staticmethod
    def _address(identity: str) -> str:
        if not Web3.is_address(identity):
            raise SubmissionRejected(f"Not an address: {identity!r}")
        return Web3.to_checksum_address(identity)
