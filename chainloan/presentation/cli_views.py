"""
Terminal rendering for the loan CLI using the rich library.

Amounts on the ledger are integers in smallest units (18 decimals for both
the principal token and the native asset). Display conversion goes through
web3's unit helpers, which work on Decimal, so no float ever touches a value.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from web3 import Web3

from ..models.loan import LoanSnapshot, LoanStatus
from ..models.outcome import Outcome, OutcomeKind

STATUS_STYLES = {
    LoanStatus.PENDING: "yellow",
    LoanStatus.ACTIVE: "green",
    LoanStatus.REPAID: "dim",
}


def format_units(amount: int) -> str:
    """Format smallest units as a whole-unit decimal string (1500000000000000000 -> "1.5")."""
    value = Web3.from_wei(amount, "ether")
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def parse_amount(text: str, ether: bool = False) -> int:
    """
    Parse a CLI amount into smallest units.

    Args:
        text: Amount as typed by the user.
        ether: Interpret `text` as whole units (18 decimals).

    Raises:
        ValueError: Not a number, or a fractional amount of smallest units.
    """
    try:
        value = Decimal(text.strip())
    except InvalidOperation:
        raise ValueError(f"Not a number: {text!r}")
    if not value.is_finite():
        raise ValueError(f"Not a finite amount: {text!r}")

    if ether:
        return int(Web3.to_wei(value, "ether"))
    if value != value.to_integral_value():
        raise ValueError(f"Amount in smallest units must be whole: {text!r}")
    return int(value)


def render_loans(snapshot: Optional[LoanSnapshot]) -> Panel:
    """Render the loan table."""
    if snapshot is None:
        return Panel(Text("No loans loaded", style="dim"), title="Your Loans")

    if len(snapshot) == 0:
        return Panel(Text("No loans yet", style="dim"), title=f"Your Loans ({snapshot.identity})")

    table = Table(show_header=True, box=None)
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Loan Amount", justify="right")
    table.add_column("Collateral", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Status", style="bold")

    for loan in snapshot:
        table.add_row(
            str(loan.index),
            f"{format_units(loan.principal_amount)} USD",
            f"{format_units(loan.collateral_amount)} ETH",
            f"{loan.duration_days} days",
            Text(loan.status.value.title(), style=STATUS_STYLES[loan.status]),
        )

    return Panel(
        table,
        title=f"Your Loans ({snapshot.identity})",
        subtitle=f"v{snapshot.as_of_version} @ {snapshot.fetched_at:%H:%M:%S}",
        border_style="green",
    )


def render_balance(identity: Optional[str], balance: int) -> Text:
    return Text(f"{identity or '?'}: {format_units(balance)} ETH", style="bold")


def render_failure(outcome: Outcome) -> Panel:
    """Render a failure outcome with the transaction involved, if any."""
    body = Text(outcome.message or outcome.kind.value)
    if outcome.tx_hash:
        body.append(f"\ntx: {outcome.tx_hash}", style="dim")
    if outcome.confirmed:
        body.append("\nThe transaction was confirmed; run `loans` to refresh.", style="yellow")
    elif outcome.kind is OutcomeKind.AMBIGUOUS:
        body.append("\nThe transaction may still be included; run `loans` before retrying.", style="yellow")

    border = "yellow" if outcome.kind.user_retryable or outcome.kind is OutcomeKind.AMBIGUOUS else "red"
    return Panel(body, title=outcome.kind.value, border_style=border)


def print_outcome(console: Console, outcome: Outcome) -> None:
    """Print an OK outcome's value (snapshot, identity or nothing) or the failure."""
    if outcome.is_err():
        console.print(render_failure(outcome))
        return

    value = outcome.value
    if isinstance(value, LoanSnapshot):
        console.print(render_loans(value))
    elif value is not None:
        console.print(Text(str(value), style="bold"))
    if outcome.tx_hash:
        console.print(Text(f"tx: {outcome.tx_hash} ({outcome.tx_status.value})", style="dim"))
