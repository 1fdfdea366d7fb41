"""
Shared number formatting utilities for consistent display across the app and exports.

Conventions:
  Amount   →  12,345.6        (thousand yen, 1 decimal place)
  Percent  →  42.3%           (1 decimal place, value already × 100)
  Persons  →  12人
  Oku      →  1.23            (100 million yen)
"""

from typing import Optional

THOUSAND_YEN_PER_OKU = 100_000


def format_number(v, decimals: int = 1) -> str:
    """Comma-separated number with a fixed number of decimals: 12,345.6"""
    if v is None:
        return "N/A"
    try:
        return f"{float(v):,.{decimals}f}"
    except (TypeError, ValueError):
        return "N/A"


def format_thousand_yen(v, decimals: int = 0) -> str:
    """Amount in thousand yen: 12,345千円"""
    formatted = format_number(v, decimals)
    return formatted if formatted == "N/A" else f"{formatted}千円"


def format_percent(v) -> str:
    """Format a percentage value with 1 decimal place: 42.3%"""
    if v is None:
        return "N/A"
    try:
        return f"{float(v):.1f}%"
    except (TypeError, ValueError):
        return "N/A"


def format_signed_percent(v) -> str:
    """Percentage change with an explicit sign: +4.2%"""
    if v is None:
        return "N/A"
    try:
        return f"{float(v):+.1f}%"
    except (TypeError, ValueError):
        return "N/A"


def format_persons(v) -> str:
    if v is None:
        return "N/A"
    try:
        return f"{int(v):,}人"
    except (TypeError, ValueError):
        return "N/A"


def to_oku(thousand_yen: float) -> float:
    """Thousand yen → 100 million yen (億円)."""
    return thousand_yen / THOUSAND_YEN_PER_OKU


def calculate_isoline(marginal_profit_oku: float, rate_percent: float) -> Optional[float]:
    """
    Sales needed for a given marginal profit at a given marginal profit rate:
    sales = marginal profit ÷ rate. None when the rate is 0.
    """
    if rate_percent == 0:
        return None
    return marginal_profit_oku / (rate_percent / 100)
