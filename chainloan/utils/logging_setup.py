"""
Logging setup with categories and operation ID support.

Provides:
- 5 log categories: system, ledger, signer, tx, data
- Automatic module → category routing
- Operation ID correlation in all logs
- Per-date log directories with per-session run numbers
- Console output (colored) when enabled
- JSON formatting for files

Categories:
- system: Startup, shutdown, config, orchestrator operations
- ledger: Ledger RPC calls and transport errors
- signer: Wallet connection and signing
- tx: Transaction submission and confirmation tracking
- data: Loan reconciliation and snapshot store
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import re
import sys
from datetime import datetime
from pathlib import Path
from queue import Queue
from typing import Dict, List, Optional

from config.models import LoggingConfig

from .trace_context import get_operation_id

# =============================================================================
# GLOBAL STATE
# =============================================================================

_session_run_number: Optional[int] = None

_category_loggers: Dict[str, logging.Logger] = {}

# Queue listeners for non-blocking file logging (one per category)
_queue_listeners: List[logging.handlers.QueueListener] = []

# =============================================================================
# LOG CATEGORIES AND ROUTING
# =============================================================================

ROOT_LOGGER = "chainloan"

CATEGORIES = ["system", "ledger", "signer", "tx", "data"]

CATEGORY_SUFFIXES = {
    "system": "sys",
    "ledger": "ldg",
    "signer": "sgn",
    "tx": "trx",
    "data": "dat",
}

# Module path → category routing. More specific paths come first.
MODULE_ROUTING: List[tuple[str, str]] = [
    ("chainloan.infrastructure.adapters.evm.signers", "signer"),
    ("chainloan.infrastructure.adapters", "ledger"),
    ("chainloan.infrastructure.stores", "data"),
    ("chainloan.domain.services.signer_session", "signer"),
    ("chainloan.domain.services.transaction_tracker", "tx"),
    ("chainloan.domain.services.loan_reconciler", "data"),
    ("chainloan.application", "system"),
    ("chainloan.presentation", "system"),
    ("chainloan", "system"),
]


def get_category_for_module(module_name: str) -> str:
    """
    Determine the log category for a given module name.

    Args:
        module_name: Full module path (e.g., "chainloan.domain.services.transaction_tracker").

    Returns:
        Category name.
    """
    for prefix, category in MODULE_ROUTING:
        if module_name.startswith(prefix):
            return category
    return "system"


# =============================================================================
# FORMATTERS
# =============================================================================

class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured file logs.

    Formats log records as single-line JSON with timestamp, level,
    category, operation ID, message and optional extra data.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": datetime.now().isoformat(),
            "level": record.levelname,
            "cat": self._get_category(record.name),
            "op": get_operation_id(),
            "msg": record.getMessage(),
        }

        if hasattr(record, "data") and record.data:
            log_entry["data"] = record.data

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)

    def _get_category(self, logger_name: str) -> str:
        parts = logger_name.split(".")
        if len(parts) >= 2 and parts[0] == ROOT_LOGGER and parts[1] in CATEGORIES:
            return parts[1]
        return "system"


class ConsoleFormatter(logging.Formatter):
    """
    Console formatter with operation ID and color support.

    Format: [LEVEL] [op] message
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        op_id = get_operation_id()
        level = record.levelname
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        if self.use_colors:
            color = self.COLORS.get(level, "")
            return f"{color}[{level:7}]{self.RESET} [{op_id}] {message}"
        return f"[{level:7}] [{op_id}] {message}"


# =============================================================================
# LOGGER FACTORY
# =============================================================================

def get_logger(module_name: str) -> logging.Logger:
    """
    Get a logger for the given module, routed to its category logger.

    Args:
        module_name: Module name (typically __name__).

    Returns:
        Logger instance for the module's category.

    Example:
        from chainloan.utils.logging_setup import get_logger
        logger = get_logger(__name__)
        logger.info("Polling transaction...")
    """
    category = get_category_for_module(module_name)
    return logging.getLogger(f"{ROOT_LOGGER}.{category}")


# =============================================================================
# RUN NUMBER MANAGEMENT
# =============================================================================

def _get_next_run_number(log_dir: str, env: str, date_str: str) -> int:
    """Find the next available run number for today's date."""
    log_path = Path(log_dir) / date_str
    if not log_path.exists():
        return 1

    suffixes = "|".join(CATEGORY_SUFFIXES.values())
    pattern = re.compile(
        rf"^chainloan_{re.escape(env)}_(?:{suffixes})_{re.escape(date_str)}_(\d+)\.log$"
    )

    max_num = 0
    for filename in os.listdir(log_path):
        match = pattern.match(filename)
        if match:
            max_num = max(max_num, int(match.group(1)))

    return max_num + 1


def _get_session_run_number(log_dir: str, env: str) -> int:
    global _session_run_number

    if _session_run_number is None:
        date_str = datetime.now().strftime("%Y-%m-%d")
        _session_run_number = _get_next_run_number(log_dir, env, date_str)

    return _session_run_number


def reset_session_run_number() -> None:
    """Reset the session run number (for testing)."""
    global _session_run_number
    _session_run_number = None


# =============================================================================
# CATEGORY LOGGING SETUP
# =============================================================================

def setup_category_logging(
    env: str,
    log_dir: str = "./logs",
    level: str = "INFO",
    console: bool = False,
    verbose: bool = False,
    file_logging: bool = True,
) -> Dict[str, logging.Logger]:
    """
    Set up one logger (and log file) per category.

    Files land in a date-specific subdirectory:
    - logs/{date}/chainloan_{env}_sys_{date}_{run}.log
    - logs/{date}/chainloan_{env}_ldg_{date}_{run}.log
    - ...

    Args:
        env: Environment name (dev/prod/test).
        log_dir: Base directory for log files.
        level: Default logging level.
        console: Enable console output.
        verbose: Force DEBUG level.
        file_logging: Write JSON log files.

    Returns:
        Dict mapping category name to logger.
    """
    shutdown_logging()

    for category in CATEGORIES:
        logger = logging.getLogger(f"{ROOT_LOGGER}.{category}")
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    effective_level = "DEBUG" if verbose else level.upper()
    numeric_level = getattr(logging, effective_level, logging.INFO)

    log_path: Optional[Path] = None
    run_number = 0
    date_str = datetime.now().strftime("%Y-%m-%d")
    if file_logging:
        log_path = Path(log_dir) / date_str
        log_path.mkdir(parents=True, exist_ok=True)
        run_number = _get_session_run_number(log_dir, env)

    for category in CATEGORIES:
        logger = logging.getLogger(f"{ROOT_LOGGER}.{category}")
        logger.setLevel(numeric_level)
        logger.propagate = False

        if log_path is not None:
            filename = f"chainloan_{env}_{CATEGORY_SUFFIXES[category]}_{date_str}_{run_number}.log"
            file_handler = logging.FileHandler(
                filename=str(log_path / filename),
                mode="a",
                encoding="utf-8",
            )
            file_handler.setFormatter(JSONFormatter())
            file_handler.setLevel(numeric_level)

            # QueueHandler keeps disk writes off the event loop
            log_queue: Queue = Queue(-1)
            logger.addHandler(logging.handlers.QueueHandler(log_queue))
            listener = logging.handlers.QueueListener(
                log_queue, file_handler, respect_handler_level=True
            )
            listener.start()
            _queue_listeners.append(listener)

        if console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(ConsoleFormatter(use_colors=sys.stderr.isatty()))
            console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
            logger.addHandler(console_handler)

        _category_loggers[category] = logger

    return _category_loggers


def setup_logging_from_config(
    config: LoggingConfig,
    env: str,
    console: bool = False,
    verbose: bool = False,
) -> Dict[str, logging.Logger]:
    """Configure category logging from the `logging` config section."""
    return setup_category_logging(
        env=env,
        log_dir=config.directory,
        level=config.level,
        console=console or config.console,
        verbose=verbose,
        file_logging=config.file_logging,
    )


def shutdown_logging() -> None:
    """Stop queue listeners, flushing pending records (call on shutdown)."""
    for listener in _queue_listeners:
        listener.stop()
    _queue_listeners.clear()
