"""Loan orchestration over an EVM lending contract."""

__version__ = "0.1.0"
