"""
Application Bootstrap - Composition Root for Service Wiring.

AppContainer builds the ledger client, signer, session, tracker, reconciler
and orchestrator from an AppConfig, in dependency order.

Usage:
    container = AppContainer(config, ledger_mode="web3")
    await container.initialize()
    outcome = await container.orchestrator.refresh_loans()
    # ... run application ...
    await container.cleanup()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from config.models import AppConfig

from ..domain.clock import Clock, SystemClock
from ..domain.exceptions import ConfigurationError
from ..domain.interfaces.ledger_client import LedgerClient
from ..domain.interfaces.signer import Signer
from ..domain.services import LoanStateReconciler, SignerSession, TransactionTracker
from ..infrastructure.adapters.evm import (
    LocalAccountSigner,
    Web3LedgerClient,
    Web3ProviderSigner,
    create_async_web3,
)
from ..infrastructure.adapters.evm.errors import translate_read_error
from ..infrastructure.adapters.memory_ledger import InMemoryLedger, MemorySigner
from ..infrastructure.stores import SnapshotStore
from ..utils.logging_setup import get_logger
from .orchestrator import LoanOrchestrator


logger = get_logger(__name__)

LEDGER_MODES = ("web3", "memory")

# Account the in-memory signer authorizes
DEMO_ACCOUNT = "0x00000000000000000000000000000000000d3e70"
DEMO_BALANCE_WEI = 10 * 10**18


@dataclass
class AppContainer:
    """
    Composition root for all application services.

    Attributes:
        config: Application configuration.
        ledger_mode: "web3" (JSON-RPC node) or "memory" (simulated ledger).
        clock: Time source shared by tracker, reconciler and orchestrator.
    """

    config: AppConfig
    ledger_mode: str = "web3"
    clock: Optional[Clock] = None

    w3: Optional[Any] = field(default=None, init=False)
    ledger: Optional[LedgerClient] = field(default=None, init=False)
    signer: Optional[Signer] = field(default=None, init=False)
    session: Optional[SignerSession] = field(default=None, init=False)
    store: Optional[SnapshotStore] = field(default=None, init=False)
    tracker: Optional[TransactionTracker] = field(default=None, init=False)
    reconciler: Optional[LoanStateReconciler] = field(default=None, init=False)
    orchestrator: Optional[LoanOrchestrator] = field(default=None, init=False)

    _initialized: bool = field(default=False, init=False)

    async def initialize(self) -> None:
        """
        Build all services in dependency order.

        Raises:
            ConfigurationError: Unknown ledger mode, bad contract address or
                key, or the node reports an unexpected chain id.
            LedgerUnavailable: The node could not be reached for the chain check.
        """
        if self._initialized:
            raise RuntimeError("AppContainer already initialized")
        if self.ledger_mode not in LEDGER_MODES:
            raise ConfigurationError(
                f"Ledger mode must be one of {LEDGER_MODES}, got {self.ledger_mode!r}"
            )

        self.clock = self.clock or SystemClock()

        # Phase 1: Ledger and signer
        if self.ledger_mode == "memory":
            self._create_memory_ledger()
        else:
            self._create_web3_ledger()
            await self._verify_chain_id()

        # Phase 2: Domain services
        self._create_domain_services()

        # Phase 3: Orchestrator (depends on all above)
        self._create_orchestrator()

        self._initialized = True
        logger.info(f"AppContainer initialized (ledger={self.ledger_mode}, signer={self.config.signer.mode})")

    def _create_memory_ledger(self) -> None:
        ledger = InMemoryLedger()
        ledger.set_balance(DEMO_ACCOUNT, DEMO_BALANCE_WEI)
        self.ledger = ledger
        if self.config.signer.mode != "none":
            self.signer = MemorySigner(ledger, accounts=[DEMO_ACCOUNT])
        logger.info("Using in-memory ledger")

    def _create_web3_ledger(self) -> None:
        ledger_config = self.config.ledger
        self.w3 = create_async_web3(ledger_config)
        self.ledger = Web3LedgerClient(self.w3, ledger_config.contract_address or "")

        mode = self.config.signer.mode
        if mode == "provider":
            self.signer = Web3ProviderSigner(self.w3)
        elif mode == "local":
            self.signer = LocalAccountSigner(self.w3, self.config.signer.private_key or "")
        logger.info(f"Using JSON-RPC ledger at {ledger_config.rpc_url}, contract {self.ledger.contract_address}")

    async def _verify_chain_id(self) -> None:
        expected = self.config.ledger.chain_id
        if expected is None:
            return

        try:
            actual = await self.w3.eth.chain_id
        except Exception as e:
            raise translate_read_error(e, "eth_chainId")
        if actual != expected:
            raise ConfigurationError(f"Node reports chain id {actual}, config expects {expected}")

    def _create_domain_services(self) -> None:
        self.session = SignerSession(self.signer)
        self.store = SnapshotStore()
        self.tracker = TransactionTracker(
            self.ledger,
            poll_interval_sec=self.config.tracker.poll_interval_sec,
            max_wait_sec=self.config.tracker.max_wait_sec,
            clock=self.clock,
        )
        self.reconciler = LoanStateReconciler(self.ledger, store=self.store, clock=self.clock)

    def _create_orchestrator(self) -> None:
        self.orchestrator = LoanOrchestrator(
            session=self.session,
            ledger=self.ledger,
            tracker=self.tracker,
            reconciler=self.reconciler,
            limits=self.config.loan_limits,
            reconcile=self.config.reconcile,
            clock=self.clock,
        )

    async def cleanup(self) -> None:
        """Clean up all resources in reverse order."""
        if self.tracker:
            cancelled = self.tracker.cancel_all()
            if cancelled:
                logger.warning(f"Cancelled tracking of {cancelled} transaction(s) on shutdown")

        if self.signer:
            await self.signer.close()

        if self.ledger:
            await self.ledger.close()

        logger.info("Cleanup complete")
