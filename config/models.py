"""Configuration data models."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class LedgerConfig:
    """Ledger JSON-RPC endpoint and loan contract."""
    rpc_url: str
    contract_address: Optional[str]
    chain_id: Optional[int] = None
    request_timeout_sec: float = 20.0


@dataclass
class SignerConfig:
    """Signer backend.

    mode:
        provider - accounts managed behind the JSON-RPC provider (wallet / node)
        local    - local private key via eth_account
        none     - no signer; mutations fail with NoSignerAvailable
    """
    mode: str = "provider"
    private_key: Optional[str] = None


@dataclass
class TrackerConfig:
    """Transaction confirmation polling."""
    poll_interval_sec: float = 2.0
    max_wait_sec: float = 60.0


@dataclass
class ReconcileConfig:
    """Retry policy for LedgerUnavailable during snapshot refresh."""
    max_attempts: int = 3
    backoff_initial_sec: float = 0.5
    backoff_factor: float = 2.0
    backoff_max_sec: float = 5.0


@dataclass
class LoanLimitsConfig:
    """Protocol-accepted bounds checked locally before any ledger call.

    Amounts are integers in smallest units. None disables an upper bound.
    """
    max_principal: Optional[int] = None
    max_collateral: Optional[int] = None
    min_duration_days: int = 1
    max_duration_days: int = 365


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    directory: str = "./logs"
    console: bool = False
    file_logging: bool = True


@dataclass
class AppConfig:
    """Complete application configuration."""
    env: str
    ledger: LedgerConfig
    signer: SignerConfig
    tracker: TrackerConfig
    reconcile: ReconcileConfig
    loan_limits: LoanLimitsConfig
    logging: LoggingConfig
    raw: Dict[str, Any] = field(default_factory=dict)
