"""
Translation of web3 / transport errors into domain exceptions.

Raw errors never leave the web3 adapters. JSON-RPC error codes follow
EIP-1193 / EIP-1474 (4001 = user rejected, -32000 = generic server error
where nodes report "insufficient funds").
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import aiohttp
from web3.exceptions import ContractLogicError, Web3Exception, Web3RPCError

from ....domain.exceptions import (
    Ambiguous,
    ChainLoanError,
    InsufficientFunds,
    LedgerUnavailable,
    SignerDenied,
    SubmissionRejected,
)
from ....models.transaction import TransactionStatus

USER_REJECTED_CODE = 4001
UNAUTHORIZED_CODE = 4100
METHOD_NOT_FOUND_CODE = -32601
INVALID_PARAMS_CODE = -32602

# Raised by the HTTP transport when the node cannot be reached or times out
TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


def rpc_error(exc: BaseException) -> dict[str, Any]:
    """JSON-RPC error object carried by `exc`, or {}."""
    response = getattr(exc, "rpc_response", None)
    if isinstance(response, dict) and isinstance(response.get("error"), dict):
        return response["error"]
    if exc.args and isinstance(exc.args[0], dict):
        return exc.args[0]
    return {}


def rpc_error_code(exc: BaseException) -> Optional[int]:
    code = rpc_error(exc).get("code")
    return code if isinstance(code, int) else None


def rpc_error_message(exc: BaseException) -> str:
    message = rpc_error(exc).get("message")
    return str(message) if message else str(exc)


def is_insufficient_funds(exc: BaseException) -> bool:
    return "insufficient funds" in rpc_error_message(exc).lower()


def translate_read_error(exc: BaseException, what: str) -> ChainLoanError:
    """Any failure of a read call is infrastructure from the caller's view."""
    if isinstance(exc, ChainLoanError):
        return exc
    return LedgerUnavailable(f"{what} failed: {type(exc).__name__}: {rpc_error_message(exc)}")


def translate_write_error(exc: BaseException, what: str) -> ChainLoanError:
    """
    Map a build/sign/broadcast failure to the matching domain error.

    - contract revert during gas estimation → SubmissionRejected
    - user declined in the wallet → SignerDenied
    - node reports insufficient funds → InsufficientFunds
    - invalid params / other RPC rejections → SubmissionRejected
    - transport failures → LedgerUnavailable
    """
    if isinstance(exc, ChainLoanError):
        return exc
    if isinstance(exc, ContractLogicError):
        return SubmissionRejected(f"{what} reverted: {exc}")

    code = rpc_error_code(exc)
    if code in (USER_REJECTED_CODE, UNAUTHORIZED_CODE):
        return SignerDenied(f"{what} denied by signer: {rpc_error_message(exc)}")
    if is_insufficient_funds(exc):
        return InsufficientFunds(f"{what}: {rpc_error_message(exc)}")
    if isinstance(exc, TRANSPORT_ERRORS):
        return LedgerUnavailable(f"{what} failed: {type(exc).__name__}: {exc}")
    if isinstance(exc, (Web3RPCError, Web3Exception, ValueError, TypeError)):
        return SubmissionRejected(f"{what} rejected: {rpc_error_message(exc)}")
    return LedgerUnavailable(f"{what} failed: {type(exc).__name__}: {exc}")


def translate_broadcast_error(
    exc: BaseException,
    what: str,
    tx_hash: Optional[str] = None,
) -> ChainLoanError:
    """
    Map a failure of the broadcast call itself.

    The request may have reached the node before the transport failed, so
    the transaction can already be in the pool: transport failures become
    Ambiguous (carrying the hash when it is known locally) instead of
    LedgerUnavailable. Everything else maps as in translate_write_error.
    """
    if isinstance(exc, TRANSPORT_ERRORS):
        return Ambiguous(
            f"{what} outcome unknown ({type(exc).__name__}: {exc}); refresh before retrying",
            tx_hash=tx_hash,
            tx_status=TransactionStatus.SUBMITTED,
        )
    return translate_write_error(exc, what)
