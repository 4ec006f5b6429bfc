"""Utility modules."""

from .logging_setup import (
    get_logger,
    setup_category_logging,
    setup_logging_from_config,
    shutdown_logging,
)
from .trace_context import get_operation_id, new_operation

__all__ = [
    "get_logger",
    "setup_category_logging",
    "setup_logging_from_config",
    "shutdown_logging",
    "get_operation_id",
    "new_operation",
]
