"""
Unit tests for ConfigManager.

Tests:
- Layered loading (base, env, secrets, environment variables)
- Parsing into AppConfig
- Validation errors
"""

from pathlib import Path

import pytest
import yaml

from chainloan.domain.exceptions import ConfigurationError
from config.config_manager import ConfigManager


def _write(path: Path, data) -> None:
    path.write_text(yaml.safe_dump(data))


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    _write(tmp_path / "base.yaml", {
        "ledger": {"rpc_url": "http://base:8545", "contract_address": None},
        "signer": {"mode": "provider"},
        "tracker": {"poll_interval_sec": 2, "max_wait_sec": 60},
        "logging": {"level": "info", "file_logging": False},
    })
    return tmp_path


class TestLoading:
    """Tests for layered loading."""

    def test_base_only(self, config_dir: Path) -> None:
        """Test defaults fill sections missing from base.yaml."""
        config = ConfigManager(config_dir, env="dev", environ={}).load()

        assert config.env == "dev"
        assert config.ledger.rpc_url == "http://base:8545"
        assert config.ledger.contract_address is None
        assert config.ledger.chain_id is None
        assert config.signer.mode == "provider"
        assert config.tracker.max_wait_sec == 60.0
        assert config.reconcile.max_attempts == 3
        assert config.loan_limits.max_duration_days == 365
        assert config.loan_limits.max_principal is None
        assert config.logging.level == "INFO"
        assert config.logging.file_logging is False

    def test_env_file_overrides_base(self, config_dir: Path) -> None:
        """Test env file deep-merges over base."""
        _write(config_dir / "prod.yaml", {
            "ledger": {"chain_id": 1},
            "tracker": {"max_wait_sec": 120},
        })

        config = ConfigManager(config_dir, env="prod", environ={}).load()

        assert config.ledger.rpc_url == "http://base:8545"
        assert config.ledger.chain_id == 1
        assert config.tracker.poll_interval_sec == 2.0
        assert config.tracker.max_wait_sec == 120.0

    def test_secrets_and_environment(self, config_dir: Path) -> None:
        """Test secrets.yaml then CHAINLOAN_* variables win."""
        _write(config_dir / "secrets.yaml", {"signer": {"mode": "local", "private_key": "0xfromfile"}})
        environ = {
            "CHAINLOAN_RPC_URL": "http://env:8545",
            "CHAINLOAN_CONTRACT_ADDRESS": "0x000000000000000000000000000000000000c0de",
            "CHAINLOAN_CHAIN_ID": "31337",
            "CHAINLOAN_PRIVATE_KEY": "0xfromenv",
        }

        config = ConfigManager(config_dir, env="dev", environ=environ).load()

        assert config.ledger.rpc_url == "http://env:8545"
        assert config.ledger.contract_address == "0x000000000000000000000000000000000000c0de"
        assert config.ledger.chain_id == 31337
        assert config.signer.mode == "local"
        assert config.signer.private_key == "0xfromenv"

    def test_empty_environment_value_ignored(self, config_dir: Path) -> None:
        """An empty environment variable does not override the file value."""
        config = ConfigManager(config_dir, env="dev", environ={"CHAINLOAN_RPC_URL": ""}).load()

        assert config.ledger.rpc_url == "http://base:8545"

    def test_loan_limits(self, config_dir: Path) -> None:
        """The loan_limits section is parsed into LoanLimitsConfig."""
        _write(config_dir / "dev.yaml", {
            "loan_limits": {"max_principal": 10**21, "max_collateral": 5, "max_duration_days": 90},
        })

        limits = ConfigManager(config_dir, env="dev", environ={}).load().loan_limits

        assert limits.max_principal == 10**21
        assert limits.max_collateral == 5
        assert limits.max_duration_days == 90

    def test_repository_config_loads(self) -> None:
        """Test the shipped config directory parses for every environment."""
        shipped = Path(__file__).resolve().parents[3] / "config"
        for env in ("dev", "prod"):
            config = ConfigManager(shipped, env=env, environ={}).load()
            assert config.env == env


class TestValidation:
    """Tests for validation errors."""

    def test_missing_base(self, tmp_path: Path) -> None:
        """A missing base.yaml is a configuration error."""
        with pytest.raises(ConfigurationError, match="Base config not found"):
            ConfigManager(tmp_path, environ={}).load()

    def test_invalid_yaml(self, config_dir: Path) -> None:
        """Unparseable YAML is reported with its file."""
        (config_dir / "dev.yaml").write_text("ledger: [unclosed")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            ConfigManager(config_dir, env="dev", environ={}).load()

    def test_top_level_not_mapping(self, config_dir: Path) -> None:
        """A YAML list at the top level is refused."""
        (config_dir / "dev.yaml").write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            ConfigManager(config_dir, env="dev", environ={}).load()

    def test_unknown_signer_mode(self, config_dir: Path) -> None:
        """Only the known signer modes are accepted."""
        with pytest.raises(ConfigurationError, match="signer.mode"):
            ConfigManager(config_dir, environ={"CHAINLOAN_SIGNER_MODE": "hardware"}).load()

    def test_local_signer_without_key(self, config_dir: Path) -> None:
        """Local signing needs a private key."""
        with pytest.raises(ConfigurationError, match="private_key"):
            ConfigManager(config_dir, environ={"CHAINLOAN_SIGNER_MODE": "local"}).load()

    def test_wait_shorter_than_interval(self, config_dir: Path) -> None:
        """The wait window must cover at least one poll interval."""
        _write(config_dir / "dev.yaml", {"tracker": {"poll_interval_sec": 5, "max_wait_sec": 1}})

        with pytest.raises(ConfigurationError, match="max_wait_sec"):
            ConfigManager(config_dir, env="dev", environ={}).load()

    def test_non_numeric_value(self, config_dir: Path) -> None:
        """Values that cannot be converted are reported as parse failures."""
        _write(config_dir / "dev.yaml", {"reconcile": {"max_attempts": "often"}})

        with pytest.raises(ConfigurationError, match="Failed to parse"):
            ConfigManager(config_dir, env="dev", environ={}).load()

    def test_zero_attempts(self, config_dir: Path) -> None:
        """At least one refresh attempt is required."""
        _write(config_dir / "dev.yaml", {"reconcile": {"max_attempts": 0}})

        with pytest.raises(ConfigurationError, match="max_attempts"):
            ConfigManager(config_dir, env="dev", environ={}).load()

    def test_boolean_limit_rejected(self, config_dir: Path) -> None:
        """Booleans are not accepted as integer limits."""
        _write(config_dir / "dev.yaml", {"loan_limits": {"max_principal": True}})

        with pytest.raises(ConfigurationError):
            ConfigManager(config_dir, env="dev", environ={}).load()

    def test_empty_section_uses_defaults(self, config_dir: Path) -> None:
        """A section key with no body is treated as an empty mapping."""
        (config_dir / "dev.yaml").write_text("reconcile:\nloan_limits:\n")

        config = ConfigManager(config_dir, env="dev", environ={}).load()

        assert config.reconcile.max_attempts == 3
        assert config.loan_limits.max_duration_days == 365

    def test_section_not_mapping(self, config_dir: Path) -> None:
        """A section holding a list or scalar is a configuration error."""
        (config_dir / "dev.yaml").write_text("reconcile:\n  - 3\n")

        with pytest.raises(ConfigurationError, match="reconcile"):
            ConfigManager(config_dir, env="dev", environ={}).load()
