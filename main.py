"""
ChainLoan - Main Entry Point

Usage:
    python main.py --env dev connect                    # Authorize the signer account
    python main.py --env dev loans                      # Show loans
    python main.py --env dev balance                    # Show native balance
    python main.py --env dev request 1000 5 30          # Request a loan (smallest units)
    python main.py --env dev request --ether 1.5 2 30   # Request a loan (whole units)
    python main.py --env dev repay 0                    # Repay loan #0
    python main.py --ledger memory request 1000 5 30    # Against the in-memory ledger
"""

from __future__ import annotations
import argparse
import asyncio
import sys

from rich.console import Console

from config.config_manager import ConfigManager
from chainloan.application import AppContainer
from chainloan.domain.exceptions import ChainLoanError
from chainloan.models.outcome import Outcome, OutcomeKind
from chainloan.presentation.cli_views import parse_amount, print_outcome, render_balance
from chainloan.utils.logging_setup import get_logger, setup_logging_from_config, shutdown_logging


logger = get_logger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="ChainLoan - collateral-backed loans on an EVM ledger",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py connect
  python main.py request --ether 100 0.05 30
  python main.py --ledger memory request 1000 5 30
        """
    )

    parser.add_argument(
        "--env",
        type=str,
        default="dev",
        help="Environment to run in (default: dev), selects config/{env}.yaml"
    )

    parser.add_argument(
        "--config-dir",
        type=str,
        default="config",
        help="Directory containing base.yaml and environment overrides"
    )

    parser.add_argument(
        "--ledger",
        type=str,
        default="web3",
        choices=["web3", "memory"],
        help="Ledger backend: JSON-RPC node (default) or in-memory simulation"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging (DEBUG level for all categories)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("connect", help="Authorize the signer account")
    commands.add_parser("balance", help="Show the native balance of the connected account")
    commands.add_parser("loans", help="Fetch and show all loans")

    request = commands.add_parser("request", help="Request a new loan")
    request.add_argument("principal", type=str, help="Loan amount")
    request.add_argument("collateral", type=str, help="Collateral amount")
    request.add_argument("days", type=int, help="Loan duration in days")
    request.add_argument(
        "--ether",
        action="store_true",
        help="Amounts are whole units (18 decimals) instead of smallest units"
    )

    repay = commands.add_parser("repay", help="Repay a loan")
    repay.add_argument("index", type=int, help="Loan index as shown by `loans`")

    return parser.parse_args(argv)


async def run_command(container: AppContainer, args: argparse.Namespace, console: Console) -> Outcome:
    """Dispatch one sub-command to the orchestrator."""
    orchestrator = container.orchestrator

    if args.command == "connect":
        return await orchestrator.connect()

    if args.command == "balance":
        outcome = await orchestrator.get_balance()
        if outcome.is_ok():
            console.print(render_balance(orchestrator.session.current_identity(), outcome.unwrap()))
            return Outcome.ok()
        return outcome

    if args.command == "loans":
        return await orchestrator.refresh_loans()

    if args.command == "request":
        try:
            principal = parse_amount(args.principal, ether=args.ether)
            collateral = parse_amount(args.collateral, ether=args.ether)
        except ValueError as e:
            return Outcome.fail(OutcomeKind.INVALID_INPUT, str(e))
        console.print(f"Requesting loan of {principal} with collateral {collateral} for {args.days} days...")
        return await orchestrator.request_loan(principal, collateral, args.days)

    if args.command == "repay":
        console.print(f"Repaying loan #{args.index}...")
        return await orchestrator.repay_loan(args.index)

    return Outcome.fail(OutcomeKind.INVALID_INPUT, f"Unknown command {args.command!r}")


async def main_async(args: argparse.Namespace) -> int:
    """Main async entry point. Returns the process exit code."""
    console = Console()

    config = ConfigManager(config_dir=args.config_dir, env=args.env).load()
    if args.log_level:
        config.logging.level = args.log_level
    setup_logging_from_config(config.logging, env=args.env, verbose=args.verbose)
    logger.info(f"Starting ChainLoan (env={args.env}, ledger={args.ledger}, command={args.command})")

    container = AppContainer(config, ledger_mode=args.ledger)
    try:
        await container.initialize()
        outcome = await run_command(container, args, console)
    finally:
        await container.cleanup()

    print_outcome(console, outcome)
    logger.info(f"Command {args.command} finished: {outcome.kind.value}")
    return 0 if outcome.is_ok() else 1


def main() -> None:
    """Main entry point."""
    args = parse_args()

    try:
        exit_code = asyncio.run(main_async(args))
    except KeyboardInterrupt:
        print("Shutdown requested")
        exit_code = 1
    except ChainLoanError as e:
        print(f"Error: {e}")
        exit_code = 1
    finally:
        shutdown_logging()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
