"""Presentation layer - terminal rendering."""

from .cli_views import format_units, parse_amount, print_outcome, render_loans

__all__ = ["format_units", "parse_amount", "print_outcome", "render_loans"]
