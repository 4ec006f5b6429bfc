"""Ledger and signer adapters."""

from .memory_ledger import InMemoryLedger, MemorySigner

__all__ = ["InMemoryLedger", "MemorySigner"]
