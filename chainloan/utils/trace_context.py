"""
Trace context for correlating logs across a single orchestrator operation.

Provides:
- Unique operation IDs (6-char hex) for each request/repay/refresh call
- Context propagation via contextvars (async-safe, follows child tasks)
- Easy access to current operation ID from any module

Usage:
    # In orchestrator (start of operation)
    with new_operation("repay_loan"):
        await tracker.track(...)

    # In any module
    from chainloan.utils.trace_context import get_operation_id
    logger.info(f"[{get_operation_id()}] Polling...")
"""

from __future__ import annotations

import secrets
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional

_operation_id: ContextVar[Optional[str]] = ContextVar("operation_id", default=None)
_operation_name: ContextVar[Optional[str]] = ContextVar("operation_name", default=None)

# Counter for operations within a session (for debugging)
_operation_counter: int = 0


def generate_operation_id() -> str:
    """
    Generate a new unique operation ID.

    Returns:
        6-character hex string (e.g., "a7f3b2").
    """
    return secrets.token_hex(3)


def get_operation_id() -> str:
    """Current operation ID, or "------" if no operation is active."""
    op_id = _operation_id.get()
    return op_id if op_id else "------"


def get_operation_name() -> Optional[str]:
    """Name of the current operation (e.g. "request_loan"), if any."""
    return _operation_name.get()


@contextmanager
def new_operation(name: Optional[str] = None) -> Generator[str, None, None]:
    """
    Context manager to run an operation under a fresh operation ID.

    Yields:
        The new operation ID.
    """
    global _operation_counter
    _operation_counter += 1

    op_id = generate_operation_id()
    id_token = _operation_id.set(op_id)
    name_token = _operation_name.set(name)

    try:
        yield op_id
    finally:
        _operation_name.reset(name_token)
        _operation_id.reset(id_token)


def get_operation_counter() -> int:
    """Total number of operations started in this session."""
    return _operation_counter


def reset_operation_counter() -> None:
    """Reset the operation counter (for testing)."""
    global _operation_counter
    _operation_counter = 0
