"""Formatting utilities for savings summaries.

Currency, kWh and percentage helpers plus the customer-facing savings
headline, which decides between an exact figure and a vaguer message.
"""
from __future__ import annotations

from bill_parser import ComparisonResult
from comparison import should_show_exact_savings


def _es_number(value: float, precision: int) -> str:
    """Spanish grouping: dot for thousands, comma for decimals."""
    formatted = f"{value:,.{precision}f}"
    return formatted.replace(",", "\x00").replace(".", ",").replace("\x00", ".")


def format_currency(value: float | None, symbol: str = "€") -> str:
    """Format a value as EUR ("1.234,56 €"), or a dash if None."""
    if value is None:
        return "—"
    return f"{_es_number(value, 2)} {symbol}"


def format_kwh(value: float | None, precision: int = 0) -> str:
    if value is None:
        return "—"
    return f"{_es_number(value, precision)} kWh"


def format_percentage(value: float | None) -> str:
    if value is None:
        return "—"
    return f"{_es_number(value, 2)} %"


def savings_headline(result: ComparisonResult | None, min_percent: float | None = None) -> str:
    """One-line summary for the customer.

    Exact savings are only quoted when should_show_exact_savings() allows
    it; small or prudent-mode results get an "optimization opportunity"
    message instead.
    """
    if result is None:
        return "Sin comparativa disponible"
    if should_show_exact_savings(result, min_percent):
        return (
            f"Ahorra {format_currency(result.estimated_savings_amount)} al mes "
            f"({format_percentage(result.estimated_savings_percentage)}) "
            f"con {result.best_offer_company}"
        )
    return f"Hemos detectado una oportunidad de optimización con {result.best_offer_company}"
