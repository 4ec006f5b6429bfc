"""
Configuration manager with environment-based loading.

Supports:
- Base configuration (base.yaml)
- Environment-specific overrides (dev.yaml, prod.yaml, test.yaml)
- Secrets loading (secrets.yaml - gitignored)
- Environment variable overrides for deployment secrets
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
import logging
import os

import yaml

from chainloan.domain.exceptions import ConfigurationError

from .models import (
    AppConfig,
    LedgerConfig,
    LoanLimitsConfig,
    LoggingConfig,
    ReconcileConfig,
    SignerConfig,
    TrackerConfig,
)


logger = logging.getLogger(__name__)

# Environment variable → (section, key)
ENV_OVERRIDES = {
    "CHAINLOAN_RPC_URL": ("ledger", "rpc_url"),
    "CHAINLOAN_CONTRACT_ADDRESS": ("ledger", "contract_address"),
    "CHAINLOAN_CHAIN_ID": ("ledger", "chain_id"),
    "CHAINLOAN_SIGNER_MODE": ("signer", "mode"),
    "CHAINLOAN_PRIVATE_KEY": ("signer", "private_key"),
}

SIGNER_MODES = ("provider", "local", "none")


class ConfigManager:
    """
    Configuration manager with environment support.

    Loads configuration in this order:
    1. base.yaml (default config)
    2. {env}.yaml (environment-specific, e.g., dev.yaml)
    3. secrets.yaml (if exists, gitignored)
    4. CHAINLOAN_* environment variables

    Later sources override earlier ones.
    """

    def __init__(
        self,
        config_dir: str | Path = "config",
        env: str = "dev",
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize config manager.

        Args:
            config_dir: Directory containing config files.
            env: Environment name (dev, prod, etc).
            environ: Environment mapping for overrides (defaults to os.environ).
        """
        self.config_dir = Path(config_dir)
        self.env = env
        self.environ = os.environ if environ is None else environ
        self.config: Dict[str, Any] = {}

    def load(self) -> AppConfig:
        """
        Load configuration from YAML files and the environment.

        Returns:
            AppConfig object.

        Raises:
            ConfigurationError: If base config is missing or config is invalid.
        """
        base_path = self.config_dir / "base.yaml"
        if not base_path.exists():
            raise ConfigurationError(f"Base config not found: {base_path}")

        self.config = self._load_yaml(base_path)
        logger.info(f"Loaded base config from {base_path}")

        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            self.config = self._merge_dicts(self.config, self._load_yaml(env_path))
            logger.info(f"Loaded {self.env} config from {env_path}")

        secrets_path = self.config_dir / "secrets.yaml"
        if secrets_path.exists():
            self.config = self._merge_dicts(self.config, self._load_yaml(secrets_path))
            logger.info("Loaded secrets")

        self.config = self._merge_dicts(self.config, self._env_overrides())

        return self._parse_config()

    def _load_yaml(self, path: Path) -> Dict[str, Any]:
        """Load YAML file."""
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"Top level of {path} must be a mapping")
        return data

    def _merge_dicts(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dicts (override wins)."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dicts(result[key], value)
            else:
                result[key] = value
        return result

    def _env_overrides(self) -> Dict[str, Any]:
        overrides: Dict[str, Any] = {}
        for var, (section, key) in ENV_OVERRIDES.items():
            value = self.environ.get(var)
            if value:
                overrides.setdefault(section, {})[key] = value
                logger.info(f"Config override from {var}")
        return overrides

    def _section(self, name: str) -> Mapping[str, Any]:
        """Return a top-level section; an empty YAML section reads as {}."""
        section = self.config.get(name) or {}
        if not isinstance(section, Mapping):
            raise ConfigurationError(
                f"Config section '{name}' must be a mapping, got {type(section).__name__}"
            )
        return section

    def _parse_config(self) -> AppConfig:
        """Parse raw dict into AppConfig."""
        try:
            ledger_raw = self._section("ledger")
            chain_id = ledger_raw.get("chain_id")
            ledger = LedgerConfig(
                rpc_url=ledger_raw.get("rpc_url", "http://127.0.0.1:8545"),
                contract_address=ledger_raw.get("contract_address"),
                chain_id=int(chain_id) if chain_id is not None else None,
                request_timeout_sec=float(ledger_raw.get("request_timeout_sec", 20.0)),
            )

            signer_raw = self._section("signer")
            signer = SignerConfig(
                mode=str(signer_raw.get("mode", "provider")).lower(),
                private_key=signer_raw.get("private_key"),
            )

            tracker_raw = self._section("tracker")
            tracker = TrackerConfig(
                poll_interval_sec=float(tracker_raw.get("poll_interval_sec", 2.0)),
                max_wait_sec=float(tracker_raw.get("max_wait_sec", 60.0)),
            )

            reconcile_raw = self._section("reconcile")
            reconcile = ReconcileConfig(
                max_attempts=int(reconcile_raw.get("max_attempts", 3)),
                backoff_initial_sec=float(reconcile_raw.get("backoff_initial_sec", 0.5)),
                backoff_factor=float(reconcile_raw.get("backoff_factor", 2.0)),
                backoff_max_sec=float(reconcile_raw.get("backoff_max_sec", 5.0)),
            )

            limits_raw = self._section("loan_limits")
            loan_limits = LoanLimitsConfig(
                max_principal=_optional_int(limits_raw.get("max_principal")),
                max_collateral=_optional_int(limits_raw.get("max_collateral")),
                min_duration_days=int(limits_raw.get("min_duration_days", 1)),
                max_duration_days=int(limits_raw.get("max_duration_days", 365)),
            )

            logging_raw = self._section("logging")
            logging_config = LoggingConfig(
                level=str(logging_raw.get("level", "INFO")).upper(),
                directory=logging_raw.get("directory", "./logs"),
                console=bool(logging_raw.get("console", False)),
                file_logging=bool(logging_raw.get("file_logging", True)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Failed to parse config: {e}")

        app_config = AppConfig(
            env=self.env,
            ledger=ledger,
            signer=signer,
            tracker=tracker,
            reconcile=reconcile,
            loan_limits=loan_limits,
            logging=logging_config,
            raw=self.config,
        )
        validate_config(app_config)
        return app_config


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Expected integer, got {value!r}")
    return int(value)


def validate_config(config: AppConfig) -> None:
    """
    Check cross-field constraints.

    Raises:
        ConfigurationError: On the first violated constraint.
    """
    if config.signer.mode not in SIGNER_MODES:
        raise ConfigurationError(
            f"signer.mode must be one of {SIGNER_MODES}, got {config.signer.mode!r}"
        )
    if config.signer.mode == "local" and not config.signer.private_key:
        raise ConfigurationError("signer.mode 'local' requires signer.private_key")

    tracker = config.tracker
    if tracker.poll_interval_sec <= 0:
        raise ConfigurationError("tracker.poll_interval_sec must be > 0")
    if tracker.max_wait_sec < tracker.poll_interval_sec:
        raise ConfigurationError("tracker.max_wait_sec must be >= tracker.poll_interval_sec")

    reconcile = config.reconcile
    if reconcile.max_attempts < 1:
        raise ConfigurationError("reconcile.max_attempts must be >= 1")
    if reconcile.backoff_initial_sec < 0 or reconcile.backoff_factor < 1:
        raise ConfigurationError("reconcile backoff must be non-negative with factor >= 1")

    limits = config.loan_limits
    if limits.min_duration_days < 1:
        raise ConfigurationError("loan_limits.min_duration_days must be >= 1")
    if limits.max_duration_days < limits.min_duration_days:
        raise ConfigurationError("loan_limits.max_duration_days must be >= min_duration_days")
